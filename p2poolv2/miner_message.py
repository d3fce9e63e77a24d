"""Messages sent by ckpool: miner shares, workbases and user workbases."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from p2poolv2 import builders
from p2poolv2.bitcoin import compact_to_target, hash_to_hex, hex_to_hash
from p2poolv2.genesis import GenesisData

_LOCK_TIME_THRESHOLD = 500_000_000
_USER_WORKBASE_PARAM_COUNT = 9


class ShareValidationError(ValueError):
    """Raised when a miner share fails validation."""


def _require(data: dict, key: str) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"expected an object, got {type(data).__name__}")
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field `{key}`") from None


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field `{name}` must be an integer, got {value!r}")
    if value < 0:
        raise ValueError(f"field `{name}` must not be negative, got {value!r}")
    return value


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"field `{name}` must be a string, got {value!r}")
    return value


def _as_str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list):
        raise ValueError(f"field `{name}` must be a list, got {value!r}")
    return [_as_str(item, name) for item in value]


def _as_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise ValueError(f"field `{name}` must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"field `{name}` must be a number, got {value!r}") from None


def _check_time(value: int) -> int:
    if value < _LOCK_TIME_THRESHOLD:
        raise ValueError(f"invalid block time {value}: below lock time threshold")
    return value


def _parse_hex_time(value: Any, name: str) -> int:
    if isinstance(value, str):
        try:
            parsed = int(value, 16)
        except ValueError:
            raise ValueError(f"field `{name}` is not a hex time: {value!r}") from None
    else:
        parsed = _as_int(value, name)
    return _check_time(parsed)


def _format_hex_time(value: int) -> str:
    return f"{value:08x}"


def _normalise_blockhash(value: Any) -> str:
    return hash_to_hex(hex_to_hash(_as_str(value, "hash")))


@dataclass
class MinerShare:
    """Work done by a miner as reported by ckpool.

    ``ntime`` is a unix timestamp and ``hash`` the block hash in display hex.
    Fields after ``username`` are not carried over the wire.
    """

    workinfoid: int
    clientid: int
    enonce1: str
    nonce2: str
    nonce: str
    ntime: int
    diff: Decimal
    sdiff: Decimal
    hash: str
    username: str
    result: bool = False
    errn: int = 0
    createdate: str = ""
    createby: str = ""
    createcode: str = ""
    createinet: str = ""
    workername: str = ""
    address: str = ""
    agent: str = ""

    @classmethod
    def genesis(cls, genesis_data: GenesisData) -> "MinerShare":
        """The miner share of a network's genesis share block."""
        return cls(
            workinfoid=genesis_data.workinfoid,
            clientid=genesis_data.clientid,
            enonce1=genesis_data.enonce1,
            nonce2=genesis_data.nonce2,
            nonce=genesis_data.nonce,
            ntime=_check_time(genesis_data.ntime),
            diff=genesis_data.diff,
            sdiff=genesis_data.sdiff,
            hash=_normalise_blockhash(genesis_data.bitcoin_blockhash),
            username="",
            result=True,
        )

    @classmethod
    def from_dict(cls, data: dict) -> "MinerShare":
        """Build from decoded JSON; fields that are not carried are ignored."""
        return cls(
            workinfoid=_as_int(_require(data, "workinfoid"), "workinfoid"),
            clientid=_as_int(_require(data, "clientid"), "clientid"),
            enonce1=_as_str(_require(data, "enonce1"), "enonce1"),
            nonce2=_as_str(_require(data, "nonce2"), "nonce2"),
            nonce=_as_str(_require(data, "nonce"), "nonce"),
            ntime=_parse_hex_time(_require(data, "ntime"), "ntime"),
            diff=_as_decimal(_require(data, "diff"), "diff"),
            sdiff=_as_decimal(_require(data, "sdiff"), "sdiff"),
            hash=_normalise_blockhash(_require(data, "hash")),
            username=_as_str(_require(data, "username"), "username"),
        )

    def to_dict(self) -> dict:
        """The fields carried over the wire, ready for JSON encoding."""
        return {
            "workinfoid": self.workinfoid,
            "clientid": self.clientid,
            "enonce1": self.enonce1,
            "nonce2": self.nonce2,
            "nonce": self.nonce,
            "ntime": _format_hex_time(self.ntime),
            "diff": self.diff,
            "sdiff": self.sdiff,
            "hash": self.hash,
            "username": self.username,
        }

    def validate(self, workbase: "MinerWorkbase", user_workbase: "UserWorkbase") -> bool:
        """Check the share's proof of work, merkle root and witness commitment.

        Returns True, or raises ShareValidationError describing the failure.
        """
        try:
            coinbase = builders.build_coinbase_from_share(user_workbase, self)
        except ValueError as exc:
            raise ShareValidationError(f"Failed to build coinbase: {exc}") from exc
        try:
            txids = [hex_to_hash(tx.txid) for tx in workbase.txns]
        except ValueError as exc:
            raise ShareValidationError(f"Failed to parse txid: {exc}") from exc

        root = builders.compute_merkle_root_from_txids([coinbase.txid(), *txids])
        if root is None:
            raise ShareValidationError("Failed to compute merkle root")
        try:
            header = builders.build_bitcoin_header(workbase, self, root)
        except ValueError as exc:
            raise ShareValidationError(f"Failed to build header: {exc}") from exc
        try:
            block = builders.build_bitcoin_block(workbase, user_workbase, self)
        except ValueError as exc:
            raise ShareValidationError(f"Failed to build block: {exc}") from exc

        required_target = compact_to_target(int(user_workbase.params.nbit, 16))
        try:
            header.validate_pow(required_target)
        except ValueError:
            raise ShareValidationError("Invalid proof of work") from None
        if not block.check_merkle_root():
            raise ShareValidationError("Invalid merkle root")
        if not block.check_witness_commitment():
            raise ShareValidationError("Invalid witness commitment")
        return True


@dataclass
class WorkbaseTxn:
    """A transaction in a workbase: its txid and raw hex data."""

    txid: str
    data: str


@dataclass
class WorkbaseMerkleItem:
    """A merkle branch entry of a workbase."""

    merkle: str


@dataclass
class Gbt:
    """The getblocktemplate result ckpool uses as a workbase."""

    capabilities: list[str]
    version: int
    rules: list[str]
    vbavailable: Any
    vbrequired: int
    previousblockhash: str
    transactions: list[Any]
    coinbaseaux: Any
    coinbasevalue: int
    longpollid: str
    target: str
    mintime: int
    mutable: list[str]
    noncerange: str
    sigoplimit: int
    sizelimit: int
    weightlimit: int
    curtime: int
    bits: str
    height: int
    signet_challenge: Optional[str]
    default_witness_commitment: str
    diff: float
    ntime: int
    bbversion: str
    nbit: str

    @classmethod
    def from_dict(cls, data: dict) -> "Gbt":
        """Build from decoded JSON."""
        version = _require(data, "version")
        if isinstance(version, bool) or not isinstance(version, int):
            raise ValueError(f"field `version` must be an integer, got {version!r}")
        transactions = _require(data, "transactions")
        if not isinstance(transactions, list):
            raise ValueError("field `transactions` must be a list")
        diff = _require(data, "diff")
        if isinstance(diff, bool) or not isinstance(diff, (int, float, Decimal)):
            raise ValueError(f"field `diff` must be a number, got {diff!r}")
        signet_challenge = data.get("signet_challenge")
        if signet_challenge is not None:
            signet_challenge = _as_str(signet_challenge, "signet_challenge")
        return cls(
            capabilities=_as_str_list(_require(data, "capabilities"), "capabilities"),
            version=version,
            rules=_as_str_list(_require(data, "rules"), "rules"),
            vbavailable=data.get("vbavailable"),
            vbrequired=_as_int(_require(data, "vbrequired"), "vbrequired"),
            previousblockhash=_as_str(_require(data, "previousblockhash"), "previousblockhash"),
            transactions=list(transactions),
            coinbaseaux=data.get("coinbaseaux"),
            coinbasevalue=_as_int(_require(data, "coinbasevalue"), "coinbasevalue"),
            longpollid=_as_str(_require(data, "longpollid"), "longpollid"),
            target=_as_str(_require(data, "target"), "target"),
            mintime=_as_int(_require(data, "mintime"), "mintime"),
            mutable=_as_str_list(_require(data, "mutable"), "mutable"),
            noncerange=_as_str(_require(data, "noncerange"), "noncerange"),
            sigoplimit=_as_int(_require(data, "sigoplimit"), "sigoplimit"),
            sizelimit=_as_int(_require(data, "sizelimit"), "sizelimit"),
            weightlimit=_as_int(_require(data, "weightlimit"), "weightlimit"),
            curtime=_check_time(_as_int(_require(data, "curtime"), "curtime")),
            bits=_as_str(_require(data, "bits"), "bits"),
            height=_as_int(_require(data, "height"), "height"),
            signet_challenge=signet_challenge,
            default_witness_commitment=_as_str(
                _require(data, "default_witness_commitment"), "default_witness_commitment"
            ),
            diff=float(diff),
            ntime=_parse_hex_time(_require(data, "ntime"), "ntime"),
            bbversion=_as_str(_require(data, "bbversion"), "bbversion"),
            nbit=_as_str(_require(data, "nbit"), "nbit"),
        )

    def to_dict(self) -> dict:
        """A JSON-ready dictionary."""
        return {
            "capabilities": list(self.capabilities),
            "version": self.version,
            "rules": list(self.rules),
            "vbavailable": self.vbavailable,
            "vbrequired": self.vbrequired,
            "previousblockhash": self.previousblockhash,
            "transactions": list(self.transactions),
            "coinbaseaux": self.coinbaseaux,
            "coinbasevalue": self.coinbasevalue,
            "longpollid": self.longpollid,
            "target": self.target,
            "mintime": self.mintime,
            "mutable": list(self.mutable),
            "noncerange": self.noncerange,
            "sigoplimit": self.sigoplimit,
            "sizelimit": self.sizelimit,
            "weightlimit": self.weightlimit,
            "curtime": self.curtime,
            "bits": self.bits,
            "height": self.height,
            "signet_challenge": self.signet_challenge,
            "default_witness_commitment": self.default_witness_commitment,
            "diff": self.diff,
            "ntime": _format_hex_time(self.ntime),
            "bbversion": self.bbversion,
            "nbit": self.nbit,
        }


@dataclass
class MinerWorkbase:
    """A ckpool workbase: block template, transactions and coinbase parts."""

    workinfoid: int
    gbt: Gbt
    txns: list[WorkbaseTxn]
    merkles: list[WorkbaseMerkleItem]
    coinb1: str
    coinb2: str
    coinb3: str
    header: str

    @classmethod
    def from_dict(cls, data: dict) -> "MinerWorkbase":
        """Build from decoded JSON."""
        txns = _require(data, "txns")
        merkles = _require(data, "merkles")
        if not isinstance(txns, list) or not isinstance(merkles, list):
            raise ValueError("fields `txns` and `merkles` must be lists")
        return cls(
            workinfoid=_as_int(_require(data, "workinfoid"), "workinfoid"),
            gbt=Gbt.from_dict(_require(data, "gbt")),
            txns=[
                WorkbaseTxn(
                    txid=_as_str(_require(tx, "txid"), "txid"),
                    data=_as_str(_require(tx, "data"), "data"),
                )
                for tx in txns
            ],
            merkles=[
                WorkbaseMerkleItem(merkle=_as_str(_require(item, "merkle"), "merkle"))
                for item in merkles
            ],
            coinb1=_as_str(_require(data, "coinb1"), "coinb1"),
            coinb2=_as_str(_require(data, "coinb2"), "coinb2"),
            coinb3=_as_str(_require(data, "coinb3"), "coinb3"),
            header=_as_str(_require(data, "header"), "header"),
        )

    def to_dict(self) -> dict:
        """A JSON-ready dictionary."""
        return {
            "workinfoid": self.workinfoid,
            "gbt": self.gbt.to_dict(),
            "txns": [{"txid": tx.txid, "data": tx.data} for tx in self.txns],
            "merkles": [{"merkle": item.merkle} for item in self.merkles],
            "coinb1": self.coinb1,
            "coinb2": self.coinb2,
            "coinb3": self.coinb3,
            "header": self.header,
        }


@dataclass
class UserWorkbaseParams:
    """Stratum job parameters, carried as a nine-element JSON array."""

    id: str
    prevhash: str
    coinb1: str
    coinb2: str
    merkles: list[str]
    version: str
    nbit: str
    ntime: str
    clean_jobs: bool

    @classmethod
    def from_list(cls, data: list) -> "UserWorkbaseParams":
        """Build from the positional array form."""
        if not isinstance(data, (list, tuple)) or len(data) != _USER_WORKBASE_PARAM_COUNT:
            raise ValueError(
                f"expected an array of {_USER_WORKBASE_PARAM_COUNT} job parameters"
            )
        id_, prevhash, coinb1, coinb2, merkles, version, nbit, ntime, clean_jobs = data
        if not isinstance(clean_jobs, bool):
            raise ValueError(f"clean_jobs must be a boolean, got {clean_jobs!r}")
        return cls(
            id=_as_str(id_, "id"),
            prevhash=_as_str(prevhash, "prevhash"),
            coinb1=_as_str(coinb1, "coinb1"),
            coinb2=_as_str(coinb2, "coinb2"),
            merkles=_as_str_list(merkles, "merkles"),
            version=_as_str(version, "version"),
            nbit=_as_str(nbit, "nbit"),
            ntime=_as_str(ntime, "ntime"),
            clean_jobs=clean_jobs,
        )

    def to_list(self) -> list:
        """The positional array form."""
        return [
            self.id,
            self.prevhash,
            self.coinb1,
            self.coinb2,
            list(self.merkles),
            self.version,
            self.nbit,
            self.ntime,
            self.clean_jobs,
        ]


@dataclass
class UserWorkbase:
    """A per-user workbase; ``method`` is not carried over the wire."""

    params: UserWorkbaseParams
    id: Optional[str]
    workinfoid: int
    method: str = field(default="")

    @classmethod
    def from_dict(cls, data: dict) -> "UserWorkbase":
        """Build from decoded JSON."""
        id_ = data.get("id") if isinstance(data, dict) else None
        return cls(
            params=UserWorkbaseParams.from_list(_require(data, "params")),
            id=None if id_ is None else _as_str(id_, "id"),
            workinfoid=_as_int(_require(data, "workinfoid"), "workinfoid"),
        )

    def to_dict(self) -> dict:
        """A JSON-ready dictionary."""
        return {
            "params": self.params.to_list(),
            "id": self.id,
            "workinfoid": self.workinfoid,
        }


CkPoolMessage = Union[MinerShare, MinerWorkbase, UserWorkbase]

_MESSAGE_TYPES = {
    "Share": MinerShare,
    "Workbase": MinerWorkbase,
    "UserWorkbase": UserWorkbase,
}


def parse_ckpool_message(data: dict) -> CkPoolMessage:
    """Decode a ckpool message of the form ``{"Share": {...}}`` and the like."""
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError("expected an object with exactly one message variant")
    (tag, payload), = data.items()
    try:
        message_type = _MESSAGE_TYPES[tag]
    except KeyError:
        raise ValueError(f"unknown variant `{tag}`") from None
    return message_type.from_dict(payload)


def ckpool_message_to_dict(message: CkPoolMessage) -> dict:
    """Encode a ckpool message in its tagged form."""
    for tag, message_type in _MESSAGE_TYPES.items():
        if isinstance(message, message_type):
            return {tag: message.to_dict()}
    raise TypeError(f"not a ckpool message: {type(message).__name__}")