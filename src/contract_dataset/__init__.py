"""
contract-dataset

Etherscanから検証済みコントラクトを取得し、CSVデータセットとDBに保存する。
"""

__version__ = "0.1.0"
