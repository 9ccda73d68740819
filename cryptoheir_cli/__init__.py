"""
Command line entry points for the CryptoHeir offline signer.
"""
