"""EIP-712 voucher codec.

Vouchers are signed as typed structured data under the ``DrainChannel``
domain, bound to a chain id and the verifying contract address, so a voucher
signed for one deployment never verifies against another.

    Voucher(bytes32 channelId,uint256 amount,uint256 nonce)
"""

from __future__ import annotations

import re
from typing import Any, Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_keys.exceptions import BadSignature
from pydantic import BaseModel, ConfigDict
from web3 import Web3

from ..domain.entities import Voucher
from ..domain.errors import MalformedVoucher

EIP712_DOMAIN_NAME = "DrainChannel"
EIP712_DOMAIN_VERSION = "1"
VOUCHER_TYPEHASH = "Voucher(bytes32 channelId,uint256 amount,uint256 nonce)"

VOUCHER_TYPES = {
    "Voucher": [
        {"name": "channelId", "type": "bytes32"},
        {"name": "amount", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
    ],
}

UINT256_MAX = 2**256 - 1

_CHANNEL_ID_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")

UintLike = Union[int, str]


class VoucherDomain(BaseModel):
    """Chain id and verifying contract that a voucher signature is bound to."""

    model_config = ConfigDict(frozen=True)

    chain_id: int
    verifying_contract: str

    def as_eip712(self) -> dict[str, Any]:
        return {
            "name": EIP712_DOMAIN_NAME,
            "version": EIP712_DOMAIN_VERSION,
            "chainId": self.chain_id,
            "verifyingContract": Web3.to_checksum_address(self.verifying_contract),
        }


def parse_uint256(value: Any, field: str) -> int:
    """Coerce an int or decimal string into a uint256, or raise MalformedVoucher."""
    if isinstance(value, bool):
        raise MalformedVoucher(f"{field} must be numeric")
    if isinstance(value, str):
        if not (value.isascii() and value.isdigit()):
            raise MalformedVoucher(f"{field} must be a decimal integer string")
        value = int(value)
    if not isinstance(value, int):
        raise MalformedVoucher(f"{field} must be numeric")
    if value < 0 or value > UINT256_MAX:
        raise MalformedVoucher(f"{field} out of uint256 range")
    return value


def parse_channel_id(channel_id: Any) -> bytes:
    if not isinstance(channel_id, str) or not _CHANNEL_ID_RE.match(channel_id):
        raise MalformedVoucher("channelId must be 0x-prefixed 32-byte hex")
    return bytes.fromhex(channel_id[2:])


def parse_address(address: Any, field: str = "address") -> str:
    """Return the checksummed form of a 20-byte hex address."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise MalformedVoucher(f"{field} must be a 20-byte hex address")
    return Web3.to_checksum_address(address)


def parse_signature(signature: Any) -> bytes:
    if not isinstance(signature, str) or not _SIGNATURE_RE.match(signature):
        raise MalformedVoucher("signature must be 0x-prefixed 65-byte hex")
    return bytes.fromhex(signature[2:])


def encode_voucher(
    channel_id: str,
    amount: UintLike,
    nonce: UintLike,
    chain_id: int,
    contract_address: str,
) -> SignableMessage:
    """Build the domain-separated signable payload for a voucher.

    All inputs are shape-checked first; nothing cryptographic happens on
    malformed input.
    """
    channel_id_bytes = parse_channel_id(channel_id)
    amount_int = parse_uint256(amount, "amount")
    nonce_int = parse_uint256(nonce, "nonce")
    domain = VoucherDomain(
        chain_id=chain_id,
        verifying_contract=parse_address(contract_address, "contractAddress"),
    )
    return encode_typed_data(
        domain_data=domain.as_eip712(),
        message_types=VOUCHER_TYPES,
        message_data={
            "channelId": channel_id_bytes,
            "amount": amount_int,
            "nonce": nonce_int,
        },
    )


def sign_payload(payload: SignableMessage, private_key: str) -> str:
    """Sign a payload and return the 0x-prefixed 65-byte signature hex."""
    signed = Account.sign_message(payload, private_key=private_key)
    sig_hex = signed.signature.hex()
    # HexBytes.hex() may or may not include 0x depending on the hexbytes version
    return sig_hex if sig_hex.startswith("0x") else "0x" + sig_hex


def recover_signer(payload: SignableMessage, signature: str) -> str:
    """Recover the checksummed signer address.

    Raises:
        MalformedVoucher: If the signature is not 65 bytes of hex.
        BadSignature/ValueError: If the signature bytes are not a valid
            secp256k1 signature.
    """
    signature_bytes = parse_signature(signature)
    return Account.recover_message(payload, signature=signature_bytes)


def verify_payload(
    payload: SignableMessage, signature: str, expected_signer: str
) -> bool:
    """True iff ``signature`` over ``payload`` was produced by ``expected_signer``.

    ``expected_signer`` must come from the channel oracle, never from the caller.
    """
    expected = parse_address(expected_signer, "expectedSigner")
    try:
        recovered = recover_signer(payload, signature)
    except (BadSignature, ValueError):
        return False
    return recovered == expected


def sign_voucher(
    channel_id: str,
    amount: int,
    nonce: int,
    domain: VoucherDomain,
    private_key: str,
) -> Voucher:
    """Encode and sign in one step, returning a Voucher value."""
    payload = encode_voucher(
        channel_id, amount, nonce, domain.chain_id, domain.verifying_contract
    )
    return Voucher(
        channel_id=channel_id,
        amount=amount,
        nonce=nonce,
        signature=sign_payload(payload, private_key),
    )


def verify_voucher(voucher: Voucher, domain: VoucherDomain, expected_signer: str) -> bool:
    """Verify a Voucher value against a domain and the expected consumer."""
    payload = encode_voucher(
        voucher.channel_id,
        voucher.amount,
        voucher.nonce,
        domain.chain_id,
        domain.verifying_contract,
    )
    return verify_payload(payload, voucher.signature, expected_signer)
