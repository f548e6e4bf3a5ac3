"""
Referral contract client: reads and updates the Merkle root the contract
verifies eligibility proofs against.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from web3 import Web3

from config import settings
from snapshot.errors import LedgerMisconfigured, LedgerTxReverted

log = logging.getLogger(__name__)

REFERRAL_ABI = [
    {
        "inputs": [],
        "name": "getLatestMerkleRoot",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "timestamp", "type": "uint256"},
            {"internalType": "bytes32", "name": "root", "type": "bytes32"},
        ],
        "name": "updateMerkleRoot",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class ReferralLedger:
    """
    Signs ``updateMerkleRoot`` with the manager key.

    An update is signed once per ``(timestamp, root)``; calling
    :meth:`update_merkle_root` again rebroadcasts the same raw transaction,
    so a retry after a lost response cannot spend a second nonce.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        contract_address: Optional[str] = None,
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        tx_timeout: Optional[int] = None,
        w3: Optional[Web3] = None,
    ):
        contract_address = contract_address or settings.REFERRAL_CONTRACT_ADDRESS
        if not contract_address:
            raise LedgerMisconfigured("REFERRAL_CONTRACT_ADDRESS is not configured")

        try:
            checksum_address = Web3.to_checksum_address(contract_address)
        except ValueError as exc:
            raise LedgerMisconfigured(f"invalid contract address {contract_address!r}") from exc

        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url or settings.RPC_URL))
        self.contract = self.w3.eth.contract(address=checksum_address, abi=REFERRAL_ABI)
        key = private_key if private_key is not None else settings.MANAGER_PRIVATE_KEY
        try:
            self.account = Account.from_key(key) if key else None
        except (ValueError, TypeError) as exc:
            raise LedgerMisconfigured("MANAGER_PRIVATE_KEY is not a valid private key") from exc
        self.chain_id = int(chain_id or settings.CHAIN_ID)
        self.tx_timeout = int(tx_timeout or settings.TX_TIMEOUT_SECONDS)
        self._signed: Dict[Tuple[int, str], SignedTransaction] = {}
        log.info(f"Referral ledger at {self.contract.address} (chain {self.chain_id})")

    def get_latest_merkle_root(self) -> str:
        root = self.contract.functions.getLatestMerkleRoot().call()
        return Web3.to_hex(root)

    def update_merkle_root(self, timestamp: int, root: str) -> str:
        """Broadcast the (once‑signed) update; returns the transaction hash."""
        signed = self._sign_update(int(timestamp), root.lower())
        tx_hash = Web3.to_hex(signed.hash)
        try:
            self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            if not _already_known(exc):
                raise
            log.info(f"updateMerkleRoot TX {tx_hash} already in the node's pool")
        else:
            log.info(f"updateMerkleRoot TX sent: {tx_hash}")
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """Block until ``tx_hash`` is mined; a reverted transaction raises."""
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        if receipt["status"] != 1:
            raise LedgerTxReverted(f"updateMerkleRoot reverted: {tx_hash}")
        log.info(f"updateMerkleRoot mined in block {receipt['blockNumber']}")
        return dict(receipt)

    def _sign_update(self, timestamp: int, root: str) -> SignedTransaction:
        if self.account is None:
            raise LedgerMisconfigured("MANAGER_PRIVATE_KEY is not configured")

        key = (timestamp, root)
        if key not in self._signed:
            nonce = self.w3.eth.get_transaction_count(self.account.address, "pending")
            tx = self.contract.functions.updateMerkleRoot(
                timestamp, Web3.to_bytes(hexstr=root)
            ).build_transaction({
                "from": self.account.address,
                "nonce": nonce,
                "gasPrice": self.w3.eth.gas_price,
                "chainId": self.chain_id,
            })
            self._signed[key] = self.account.sign_transaction(tx)
        return self._signed[key]


def _already_known(exc: Exception) -> bool:
    msg = str(exc).lower()
    return "already known" in msg or "known transaction" in msg
