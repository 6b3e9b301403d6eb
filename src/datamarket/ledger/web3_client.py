"""
datamarket/ledger/web3_client.py

LedgerClient over the deployed DatasetRegistry and BountyRegistry
contracts, reached through an EVM JSON-RPC endpoint with web3.

web3 is blocking, so every RPC call runs in a trio worker thread and the
event loop keeps serving other requests meanwhile. Reads are retried with
backoff on transport failures. Writes are sent once, then the receipt is
awaited; a missing receipt is reported as Unavailable(outcome_unknown=True)
and never resent.

Example:
    client = Web3LedgerClient(
        rpc_url="https://testnet-rpc.monad.xyz",
        dataset_address="0x1D17...",
        bounty_address="0x75f5...",
        private_keys={"0xabc...": "0x<key>"},
    )
    dataset = await client.get_dataset(3)
"""

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests
import trio
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from ..config import (
    DEFAULT_EVENT_WINDOW,
    DEFAULT_RECEIPT_TIMEOUT,
    PLATFORM_FEE_BPS,
    EngineConfig,
)
from ..errors import Rejected, Unavailable
from ..models import Bounty, Dataset, Submission, normalize_account
from .client import LedgerClient, PurchaseEvent, TxReceipt
from .codec import (
    BOUNTY_FIELDS,
    DATASET_FIELDS,
    SUBMISSION_FIELDS,
    decode_bounty,
    decode_dataset,
    decode_purchase_event,
    decode_submission,
    tuple_to_payload,
)
from .retry import RetryConfig, retry_read

logger = logging.getLogger("datamarket.ledger.web3_client")

T = TypeVar('T')

TRANSPORT_ERRORS = (
    requests.exceptions.RequestException,
    ConnectionError,
    TimeoutError,
    OSError,
)


# ============================================================================
# CONTRACT ABIS
# ============================================================================

def _params(*pairs):
    return [{"name": name, "type": kind} for name, kind in pairs]


def _fn(name, inputs=(), outputs=(), mutability="view"):
    return {
        "type": "function",
        "name": name,
        "inputs": _params(*inputs),
        "outputs": _params(*outputs),
        "stateMutability": mutability,
    }


def _event(name, *fields):
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [{"name": n, "type": t, "indexed": i} for n, t, i in fields],
    }


_DATASET_OUTPUTS = (
    ("owner", "address"), ("dataHash", "string"), ("metadataHash", "string"),
    ("price", "uint256"), ("category", "string"), ("timestamp", "uint256"), ("active", "bool"),
)

DATASET_REGISTRY_ABI = [
    _fn("getDataset", [("_datasetId", "uint256")], _DATASET_OUTPUTS),
    _fn("getDatasetsByOwner", [("_owner", "address")], [("", "uint256[]")]),
    _fn("totalDatasets", outputs=[("", "uint256")]),
    _fn(
        "registerDataset",
        [("_dataHash", "string"), ("_metadataHash", "string"), ("_price", "uint256"), ("_category", "string")],
        [("", "uint256")],
        "nonpayable",
    ),
    _fn("updateDatasetMetadata", [("_datasetId", "uint256"), ("_metadataHash", "string")], (), "nonpayable"),
    _fn("purchaseDataset", [("_datasetId", "uint256")], (), "payable"),
    _event(
        "DatasetRegistered",
        ("datasetId", "uint256", True), ("owner", "address", True),
        ("ipfsHash", "string", False), ("timestamp", "uint256", False),
    ),
    _event(
        "DatasetPurchased",
        ("datasetId", "uint256", True), ("buyer", "address", True),
        ("price", "uint256", False), ("timestamp", "uint256", False),
    ),
]

_BOUNTY_OUTPUTS = (
    ("creator", "address"), ("title", "string"), ("description", "string"),
    ("metadataHash", "string"), ("reward", "uint256"), ("category", "string"),
    ("deadline", "uint256"), ("status", "uint8"), ("timestamp", "uint256"), ("fulfiller", "address"),
)

BOUNTY_REGISTRY_ABI = [
    _fn("getBounty", [("_bountyId", "uint256")], _BOUNTY_OUTPUTS),
    _fn("totalBounties", outputs=[("", "uint256")]),
    _fn("getBountySubmissionCount", [("_bountyId", "uint256")], [("", "uint256")]),
    {
        "type": "function",
        "name": "getBountySubmissions",
        "stateMutability": "view",
        "inputs": _params(("_bountyId", "uint256")),
        "outputs": [{
            "name": "",
            "type": "tuple[]",
            "components": _params(
                ("submitter", "address"), ("dataHash", "string"), ("description", "string"),
                ("timestamp", "uint256"), ("approved", "bool"),
            ),
        }],
    },
    _fn("getCreatorBounties", [("_creator", "address")], [("", "uint256[]")]),
    _fn("getSubmitterBounties", [("_submitter", "address")], [("", "uint256[]")]),
    _fn(
        "createBounty",
        [("_title", "string"), ("_description", "string"), ("_metadataHash", "string"),
         ("_category", "string"), ("_deadline", "uint256")],
        [("", "uint256")],
        "payable",
    ),
    _fn("submitToBounty", [("_bountyId", "uint256"), ("_dataHash", "string"), ("_description", "string")], (), "nonpayable"),
    _fn("approveBounty", [("_bountyId", "uint256"), ("_submissionIndex", "uint256")], (), "nonpayable"),
    _fn("cancelBounty", [("_bountyId", "uint256")], (), "nonpayable"),
    _event(
        "BountyCreated",
        ("bountyId", "uint256", True), ("creator", "address", True),
        ("reward", "uint256", False), ("deadline", "uint256", False),
    ),
]


# ============================================================================
# WEB3 LEDGER CLIENT
# ============================================================================

class Web3LedgerClient(LedgerClient):
    """
    Contract-call LedgerClient.

    Senders listed in private_keys are signed locally; any other sender
    must be an account unlocked on the RPC node.
    """

    def __init__(
        self,
        rpc_url: str = "",
        dataset_address: str = "",
        bounty_address: str = "",
        w3: Optional[Web3] = None,
        private_keys: Optional[Dict[str, str]] = None,
        event_window: int = DEFAULT_EVENT_WINDOW,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
        fee_bps: int = PLATFORM_FEE_BPS,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint (ignored when w3 is given)
            dataset_address: DatasetRegistry contract address
            bounty_address: BountyRegistry contract address
            w3: Preconfigured Web3 instance
            private_keys: account -> private key for local signing
            event_window: Maximum block range of an event query
            receipt_timeout: Seconds to wait for a write receipt
            fee_bps: Fee rate the bounty registry applies on fulfillment
            retry_config: Backoff settings for reads
        """
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self.event_window = event_window
        self.receipt_timeout = receipt_timeout
        self.fee_bps = fee_bps
        self.retry_config = retry_config or RetryConfig()
        self._private_keys = {
            normalize_account(account): key for account, key in (private_keys or {}).items()
        }

        self.datasets = self.w3.eth.contract(
            address=Web3.to_checksum_address(dataset_address),
            abi=DATASET_REGISTRY_ABI,
        )
        self.bounties = self.w3.eth.contract(
            address=Web3.to_checksum_address(bounty_address),
            abi=BOUNTY_REGISTRY_ABI,
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        private_keys: Optional[Dict[str, str]] = None,
    ) -> "Web3LedgerClient":
        """Build a client from EngineConfig settings."""
        if not config.has_ledger:
            raise ValueError(
                "DATAMARKET_RPC_URL, DATAMARKET_DATASET_REGISTRY and "
                "DATAMARKET_BOUNTY_REGISTRY must be set"
            )
        return cls(
            rpc_url=config.rpc_url,
            dataset_address=config.dataset_registry,
            bounty_address=config.bounty_registry,
            private_keys=private_keys,
            event_window=config.event_window,
            receipt_timeout=config.receipt_timeout,
        )

    # ========================================================================
    # CALL PLUMBING
    # ========================================================================

    async def _read(self, operation: str, func: Callable[[], T]) -> T:
        async def attempt() -> T:
            try:
                return await trio.to_thread.run_sync(func)
            except ContractLogicError as e:
                raise Rejected(getattr(e, "message", None) or str(e), operation)
            except TRANSPORT_ERRORS as e:
                raise Unavailable(f"{operation}: {e}", operation=operation)
            except Web3Exception as e:
                raise Unavailable(f"{operation}: {e}", operation=operation)

        return await retry_read(operation, attempt, self.retry_config)

    def _send(self, sender_cs: str, call: Any, params: Dict[str, Any]) -> Any:
        key = self._private_keys.get(normalize_account(sender_cs))
        if not key:
            return call.transact(params)
        params["nonce"] = self.w3.eth.get_transaction_count(sender_cs)
        tx = call.build_transaction(params)
        signed = self.w3.eth.account.sign_transaction(tx, key)
        return self.w3.eth.send_raw_transaction(signed.raw_transaction)

    async def _transact(self, operation: str, sender: str, call: Any, value: int = 0) -> Any:
        """Send a write once and wait for its receipt."""
        sender_cs = Web3.to_checksum_address(sender)
        params = {"from": sender_cs, "value": value}

        try:
            tx_hash = await trio.to_thread.run_sync(self._send, sender_cs, call, params)
        except ContractLogicError as e:
            raise Rejected(getattr(e, "message", None) or str(e), operation)
        except TRANSPORT_ERRORS as e:
            logger.error(f"{operation} not sent: {e}")
            raise Unavailable(f"{operation} not sent: {e}", operation=operation)
        except Web3Exception as e:
            # Node refused the transaction (nonce, funds, gas); nothing was mined
            raise Rejected(str(e), operation)

        hex_hash = Web3.to_hex(tx_hash)
        logger.info(f"{operation} sent: {hex_hash}")

        try:
            receipt = await trio.to_thread.run_sync(
                lambda: self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
            )
        except (TimeExhausted,) + TRANSPORT_ERRORS as e:
            logger.error(f"{operation} outcome unknown for {hex_hash}: {e}")
            raise Unavailable(
                f"{operation} sent as {hex_hash} but no receipt: {e}",
                operation=operation,
                outcome_unknown=True,
            )

        if receipt["status"] != 1:
            raise Rejected(f"transaction {hex_hash} reverted", operation)
        return receipt

    @staticmethod
    def _receipt(receipt: Any, result: Optional[int] = None) -> TxReceipt:
        return TxReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=receipt["blockNumber"],
            result=result,
        )

    @staticmethod
    def _event_arg(events: Any, name: str, operation: str) -> int:
        for event in events:
            return int(event["args"][name])
        raise Unavailable(f"{operation} confirmed without an id event", operation=operation, outcome_unknown=True)

    # ========================================================================
    # DATASET READS
    # ========================================================================

    async def get_dataset(self, dataset_id: int) -> Optional[Dataset]:
        result = await self._read("get_dataset", lambda: self.datasets.functions.getDataset(dataset_id).call())
        return decode_dataset(dataset_id, tuple_to_payload(DATASET_FIELDS, list(result), f"dataset {dataset_id}"))

    async def get_dataset_count(self) -> int:
        return int(await self._read("get_dataset_count", lambda: self.datasets.functions.totalDatasets().call()))

    async def get_datasets_by_owner(self, owner: str) -> List[int]:
        owner_cs = Web3.to_checksum_address(owner)
        ids = await self._read(
            "get_datasets_by_owner",
            lambda: self.datasets.functions.getDatasetsByOwner(owner_cs).call(),
        )
        return [int(i) for i in ids]

    async def get_block_number(self) -> int:
        return int(await self._read("get_block_number", lambda: self.w3.eth.block_number))

    async def get_purchase_events(
        self,
        account: str,
        from_block: int,
        to_block: int,
    ) -> List[PurchaseEvent]:
        if to_block - from_block > self.event_window:
            raise Rejected(
                f"Block range {to_block - from_block} exceeds limit of {self.event_window}",
                "get_purchase_events",
            )
        buyer_cs = Web3.to_checksum_address(account)
        logs = await self._read(
            "get_purchase_events",
            lambda: self.datasets.events.DatasetPurchased.get_logs(
                argument_filters={"buyer": buyer_cs},
                from_block=from_block,
                to_block=to_block,
            ),
        )

        events = []
        for log in logs:
            args = log["args"]
            tx_hash = log.get("transactionHash")
            events.append(decode_purchase_event({
                "datasetId": args["datasetId"],
                "buyer": args["buyer"],
                "price": args["price"],
                "timestamp": args["timestamp"],
                "blockNumber": log.get("blockNumber", 0),
                "transactionHash": Web3.to_hex(tx_hash) if tx_hash else None,
            }))
        return events

    # ========================================================================
    # BOUNTY READS
    # ========================================================================

    async def get_bounty(self, bounty_id: int) -> Optional[Bounty]:
        result = await self._read("get_bounty", lambda: self.bounties.functions.getBounty(bounty_id).call())
        count = await self._read(
            "get_bounty",
            lambda: self.bounties.functions.getBountySubmissionCount(bounty_id).call(),
        )
        payload = tuple_to_payload(BOUNTY_FIELDS, list(result), f"bounty {bounty_id}")
        return decode_bounty(bounty_id, payload, submission_count=int(count), fee_bps=self.fee_bps)

    async def get_bounty_count(self) -> int:
        return int(await self._read("get_bounty_count", lambda: self.bounties.functions.totalBounties().call()))

    async def get_submissions(self, bounty_id: int) -> List[Submission]:
        rows = await self._read(
            "get_submissions",
            lambda: self.bounties.functions.getBountySubmissions(bounty_id).call(),
        )
        what = f"submission to bounty {bounty_id}"
        return [
            decode_submission(bounty_id, tuple_to_payload(SUBMISSION_FIELDS, list(row), what))
            for row in rows
        ]

    async def get_bounties_by_creator(self, creator: str) -> List[int]:
        creator_cs = Web3.to_checksum_address(creator)
        ids = await self._read(
            "get_bounties_by_creator",
            lambda: self.bounties.functions.getCreatorBounties(creator_cs).call(),
        )
        return [int(i) for i in ids]

    async def get_bounties_by_submitter(self, submitter: str) -> List[int]:
        submitter_cs = Web3.to_checksum_address(submitter)
        ids = await self._read(
            "get_bounties_by_submitter",
            lambda: self.bounties.functions.getSubmitterBounties(submitter_cs).call(),
        )
        return [int(i) for i in ids]

    # ========================================================================
    # WRITES
    # ========================================================================

    async def register_dataset(
        self,
        sender: str,
        content_hash: str,
        metadata_hash: str,
        price_units: int,
        category: str,
    ) -> TxReceipt:
        call = self.datasets.functions.registerDataset(content_hash, metadata_hash, price_units, category)
        receipt = await self._transact("register_dataset", sender, call)
        events = self.datasets.events.DatasetRegistered().process_receipt(receipt, errors=DISCARD)
        return self._receipt(receipt, self._event_arg(events, "datasetId", "register_dataset"))

    async def update_dataset_metadata(
        self,
        sender: str,
        dataset_id: int,
        metadata_hash: str,
    ) -> TxReceipt:
        call = self.datasets.functions.updateDatasetMetadata(dataset_id, metadata_hash)
        return self._receipt(await self._transact("update_dataset_metadata", sender, call))

    async def purchase_dataset(
        self,
        sender: str,
        dataset_id: int,
        payment_units: int,
    ) -> TxReceipt:
        call = self.datasets.functions.purchaseDataset(dataset_id)
        return self._receipt(await self._transact("purchase_dataset", sender, call, value=payment_units))

    async def create_bounty(
        self,
        sender: str,
        title: str,
        description: str,
        metadata_hash: str,
        category: str,
        deadline: int,
        reward_units: int,
    ) -> TxReceipt:
        call = self.bounties.functions.createBounty(title, description, metadata_hash, category, deadline)
        receipt = await self._transact("create_bounty", sender, call, value=reward_units)
        events = self.bounties.events.BountyCreated().process_receipt(receipt, errors=DISCARD)
        return self._receipt(receipt, self._event_arg(events, "bountyId", "create_bounty"))

    async def submit_to_bounty(
        self,
        sender: str,
        bounty_id: int,
        content_hash: str,
        description: str,
    ) -> TxReceipt:
        call = self.bounties.functions.submitToBounty(bounty_id, content_hash, description)
        return self._receipt(await self._transact("submit_to_bounty", sender, call))

    async def approve_bounty(
        self,
        sender: str,
        bounty_id: int,
        submission_index: int,
    ) -> TxReceipt:
        call = self.bounties.functions.approveBounty(bounty_id, submission_index)
        return self._receipt(await self._transact("approve_bounty", sender, call))

    async def cancel_bounty(self, sender: str, bounty_id: int) -> TxReceipt:
        call = self.bounties.functions.cancelBounty(bounty_id)
        return self._receipt(await self._transact("cancel_bounty", sender, call))
