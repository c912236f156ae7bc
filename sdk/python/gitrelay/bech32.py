"""
Bech32 (BIP-173) codec for self-certifying public key identities.

Repository owners are addressed by ``npub1...`` strings: a bech32 encoding
of the 32-byte public key under the ``npub`` human-readable part.
"""

from gitrelay.exceptions import DecodeError

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LENGTH = 6

NPUB_PREFIX = "npub"


class Bech32Codec:
    """
    Bech32 encoder/decoder.

    Works on 8-bit payloads: ``encode`` regroups bytes into 5-bit words and
    appends the checksum, ``decode`` verifies and reverses it.
    """

    def encode(self, hrp: str, data: bytes) -> str:
        """
        Encode bytes under a human-readable part.

        Args:
            hrp: Human-readable part (e.g., "npub")
            data: Payload bytes

        Returns:
            Lowercase bech32 string
        """
        words = self._convert_bits(data, 8, 5, pad=True)
        checksum = self._create_checksum(hrp, words)
        return hrp + "1" + "".join(CHARSET[w] for w in words + checksum)

    def decode(self, value: str) -> tuple[str, bytes]:
        """
        Decode a bech32 string.

        Args:
            value: Bech32 string (either all lower or all upper case)

        Returns:
            Tuple of (hrp, payload bytes)

        Raises:
            DecodeError: On mixed case, bad characters, bad checksum or padding
        """
        if not value or any(ord(c) < 33 or ord(c) > 126 for c in value):
            raise DecodeError("bech32 string contains invalid characters")
        if value.lower() != value and value.upper() != value:
            raise DecodeError("bech32 string mixes upper and lower case")

        value = value.lower()
        separator = value.rfind("1")
        if separator < 1 or separator + _CHECKSUM_LENGTH + 1 > len(value):
            raise DecodeError("bech32 separator missing or misplaced")

        hrp = value[:separator]
        words: list[int] = []
        for char in value[separator + 1:]:
            index = CHARSET.find(char)
            if index == -1:
                raise DecodeError(f"invalid bech32 character {char!r}")
            words.append(index)

        if not self._verify_checksum(hrp, words):
            raise DecodeError("bech32 checksum mismatch")

        data = self._convert_bits(words[:-_CHECKSUM_LENGTH], 5, 8, pad=False)
        return hrp, bytes(data)

    def _polymod(self, values: list[int]) -> int:
        chk = 1
        for value in values:
            top = chk >> 25
            chk = (chk & 0x1FFFFFF) << 5 ^ value
            for i, generator in enumerate(_GENERATOR):
                if (top >> i) & 1:
                    chk ^= generator
        return chk

    def _hrp_expand(self, hrp: str) -> list[int]:
        return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]

    def _verify_checksum(self, hrp: str, words: list[int]) -> bool:
        return self._polymod(self._hrp_expand(hrp) + words) == 1

    def _create_checksum(self, hrp: str, words: list[int]) -> list[int]:
        polymod = self._polymod(self._hrp_expand(hrp) + words + [0] * _CHECKSUM_LENGTH) ^ 1
        return [(polymod >> 5 * (5 - i)) & 31 for i in range(_CHECKSUM_LENGTH)]

    def _convert_bits(
        self, data: bytes | list[int], from_bits: int, to_bits: int, pad: bool
    ) -> list[int]:
        """Regroup a sequence of ``from_bits`` integers into ``to_bits`` integers."""
        acc = 0
        bits = 0
        result: list[int] = []
        max_value = (1 << to_bits) - 1
        for value in data:
            if value < 0 or value >> from_bits:
                raise DecodeError("bech32 word out of range")
            acc = (acc << from_bits) | value
            bits += from_bits
            while bits >= to_bits:
                bits -= to_bits
                result.append((acc >> bits) & max_value)
        if pad:
            if bits:
                result.append((acc << (to_bits - bits)) & max_value)
        elif bits >= from_bits or ((acc << (to_bits - bits)) & max_value):
            raise DecodeError("bech32 payload has invalid padding")
        return result


# Module-level convenience functions
_codec = Bech32Codec()


def npub_encode(public_key_hex: str) -> str:
    """
    Encode a 64-hex public key as ``npub1...``.

    Raises:
        DecodeError: If the key is not 32 bytes of hex
    """
    try:
        raw = bytes.fromhex(public_key_hex)
    except ValueError as e:
        raise DecodeError(f"public key is not hex: {e}") from e
    if len(raw) != 32:
        raise DecodeError(f"public key must be 32 bytes, got {len(raw)}")
    return _codec.encode(NPUB_PREFIX, raw)


def npub_decode(npub: str) -> str:
    """
    Decode an ``npub1...`` string to a lowercase 64-hex public key.

    Raises:
        DecodeError: On any malformed input
    """
    hrp, data = _codec.decode(npub.strip())
    if hrp != NPUB_PREFIX:
        raise DecodeError(f"expected npub, got {hrp}")
    if len(data) != 32:
        raise DecodeError(f"npub payload must be 32 bytes, got {len(data)}")
    return data.hex()
