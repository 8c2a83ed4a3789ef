"""
WalletVault Multi-Wallet Manager

LEGAL NOTICE AND THREAT MODEL:
This tool is for personal use only. Private keys are kept on the device where
it is installed, encrypted under a single vault password. Every signature,
transaction or key disclosure requires an explicit confirmation from the device
owner at the moment it happens. Remote dApps never receive key material.
"""
