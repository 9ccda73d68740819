"""
Data models for the transaction descriptors passed between phases.

Field aliases are the JSON wire names; they must not change, since a file
written by one phase is read by the next one on a different machine.
"""
import json
from pathlib import Path
from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Tuple, Type, TypeVar, Union

from pydantic import AliasChoices, BaseModel, Field, PlainSerializer, ValidationError

from .exceptions import MalformedDescriptor, OutputFileError

# Wei amounts travel as decimal strings and are handled as ints in memory
WeiAmount = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str)]

D = TypeVar("D", bound="DescriptorModel")


class DescriptorModel(BaseModel):
    """Base for JSON records; fields listed in ``nullable_fields`` are written even when None."""

    nullable_fields: ClassVar[Tuple[str, ...]] = ()

    class Config:
        populate_by_name = True

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        fields = type(self).model_fields
        for field_name in self.nullable_fields:
            field = fields[field_name]
            key = field.alias or field_name
            if key not in data:
                data[key] = None
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def write(self, path: Union[str, Path]) -> Path:
        """
        Write the record to ``path`` as indented JSON.

        Raises:
            OutputFileError: If the file cannot be written
        """
        path = Path(path)
        try:
            path.write_text(self.to_json() + "\n", encoding="utf-8")
        except OSError as e:
            raise OutputFileError(
                f"Cannot write {path}: {e.strerror or e}",
                hint="Check that the directory exists and is writable.",
            ) from e
        return path

    @classmethod
    def from_dict(cls: Type[D], data: Any) -> D:
        if not isinstance(data, dict):
            raise MalformedDescriptor(
                f"Transaction file must contain a JSON object, got {type(data).__name__}"
            )
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedDescriptor(f"Invalid transaction file format: {e}") from e

    @classmethod
    def load(cls: Type[D], path: Union[str, Path]) -> D:
        """
        Load and validate a record from a JSON file.

        Raises:
            MalformedDescriptor: If the file is missing, not JSON, or has the wrong shape
        """
        path = Path(path)
        if not path.exists():
            raise MalformedDescriptor(f"Transaction file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise MalformedDescriptor(f"Transaction file is not valid JSON: {e}") from e
        except OSError as e:
            raise MalformedDescriptor(f"Cannot read transaction file {path}: {e.strerror or e}") from e
        return cls.from_dict(data)


class NetworkInfo(BaseModel):
    """Network a transaction was prepared for"""
    name: Optional[str] = None
    chain_id: int = Field(..., alias="chainId")

    class Config:
        populate_by_name = True


class DescriptorMetadata(BaseModel):
    """Metadata block carried from the unsigned descriptor into the signed one"""
    network: NetworkInfo
    estimated_cost: Optional[str] = Field(None, alias="estimatedCost")
    timestamp: Optional[str] = None
    prepared: bool = False
    signed: bool = False
    signed_at: Optional[str] = Field(None, alias="signedAt")

    class Config:
        populate_by_name = True
        extra = "allow"


class TransactionFields(BaseModel):
    """Unsigned transaction parameters"""
    type: Literal[0, 2] = 2
    from_address: str = Field(..., alias="from")
    to: Optional[str] = None
    data: str = "0x"
    nonce: int
    chain_id: int = Field(..., alias="chainId")
    gas_limit: WeiAmount = Field(..., alias="gasLimit")
    gas_price: Optional[WeiAmount] = Field(None, alias="gasPrice")
    max_fee_per_gas: Optional[WeiAmount] = Field(None, alias="maxFeePerGas")
    max_priority_fee_per_gas: Optional[WeiAmount] = Field(None, alias="maxPriorityFeePerGas")
    value: Optional[WeiAmount] = None

    class Config:
        populate_by_name = True

    @property
    def is_fee_market(self) -> bool:
        return self.type == 2

    @property
    def fee_per_gas(self) -> int:
        """Highest price per gas unit this transaction may pay."""
        if self.is_fee_market:
            return self.max_fee_per_gas or 0
        return self.gas_price or 0

    def to_signable(self) -> Dict[str, Any]:
        """
        Build the transaction dict accepted by ``eth_account``.

        Raises:
            MalformedDescriptor: If the fee fields for the transaction type are missing
        """
        tx: Dict[str, Any] = {
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "value": self.value or 0,
            "data": self.data,
        }
        if self.to:
            tx["to"] = self.to

        if self.is_fee_market:
            if self.max_fee_per_gas is None or self.max_priority_fee_per_gas is None:
                raise MalformedDescriptor(
                    "maxFeePerGas and maxPriorityFeePerGas are required for EIP-1559 transactions"
                )
            tx["maxFeePerGas"] = self.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = self.max_priority_fee_per_gas
            tx["accessList"] = []
        else:
            if self.gas_price is None:
                raise MalformedDescriptor("gasPrice is required for legacy transactions")
            tx["gasPrice"] = self.gas_price
        return tx


class UnsignedDescriptor(DescriptorModel):
    """Output of the prepare phase, input of the sign phase"""
    mode: Literal["deploy", "call"]
    function_name: Optional[str] = Field(None, alias="functionName")
    params: Dict[str, str] = Field(default_factory=dict)
    transaction: TransactionFields
    metadata: DescriptorMetadata

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        # Deployments carry an explicit null recipient
        data["transaction"].setdefault("to", None)
        return data

    @property
    def label(self) -> str:
        if self.mode == "deploy":
            return "Contract Deployment"
        return f"Function Call: {self.function_name}"


class SignedDescriptor(DescriptorModel):
    """Output of the sign phase, input of the broadcast phase"""
    nullable_fields: ClassVar[Tuple[str, ...]] = ("to", "predicted_contract_address")

    signed_transaction: str = Field(..., alias="signedTransaction")
    tx_hash: str = Field(..., alias="txHash")
    mode: Literal["deploy", "call"] = "deploy"
    function_name: Optional[str] = Field(None, alias="functionName")
    # Files from older signers name the sender "deployer"
    from_address: str = Field(..., alias="from", validation_alias=AliasChoices("from", "deployer"))
    to: Optional[str] = None
    value: str = "0"
    nonce: int
    chain_id: Optional[int] = Field(None, alias="chainId")
    gas_limit: WeiAmount = Field(..., alias="gasLimit")
    gas_price: Optional[WeiAmount] = Field(None, alias="gasPrice")
    max_fee_per_gas: Optional[WeiAmount] = Field(None, alias="maxFeePerGas")
    max_priority_fee_per_gas: Optional[WeiAmount] = Field(None, alias="maxPriorityFeePerGas")
    predicted_contract_address: Optional[str] = Field(None, alias="predictedContractAddress")
    metadata: Optional[DescriptorMetadata] = None


class Receipt(DescriptorModel):
    """Terminal record written by the broadcast phase"""
    nullable_fields: ClassVar[Tuple[str, ...]] = ("function_name", "to", "contract_address")

    mode: Literal["deploy", "call"]
    function_name: Optional[str] = Field(None, alias="functionName")
    transaction_hash: str = Field(..., alias="transactionHash")
    from_address: str = Field(..., alias="from")
    to: Optional[str] = None
    contract_address: Optional[str] = Field(None, alias="contractAddress")
    block_number: int = Field(..., alias="blockNumber")
    gas_used: WeiAmount = Field(..., alias="gasUsed")
    status: Literal["success", "failed"]
    timestamp: str
    network: NetworkInfo
    value: Optional[str] = None
