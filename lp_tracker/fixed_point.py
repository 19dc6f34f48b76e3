"""
Fixed-Point Constants and Wrapping 256-bit Integers
====================================================

Uniswap V3 stores prices and fee accumulators as fixed-point unsigned
integers. Python ints never overflow, so the protocol's modular
arithmetic has to be made explicit.

Terminology:
  • Q96:   2^96  — denominator of sqrtPriceX96 (FixedPoint96.RESOLUTION)
  • Q128:  2^128 — denominator of feeGrowth*X128 (FixedPoint128.Q128)
  • Q256:  2^256 — modulus of uint256 arithmetic

Ref: https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/FixedPoint96.sol
     https://github.com/Uniswap/v3-core/blob/main/contracts/libraries/FixedPoint128.sol
"""

Q96 = 2 ** 96
Q128 = 2 ** 128
Q256 = 2 ** 256
MAX_UINT256 = Q256 - 1
MAX_UINT128 = Q128 - 1


def wrapping_sub(a: int, b: int) -> int:
    """``a - b`` modulo 2^256, as Solidity <0.8 computes it for uint256.

    >>> wrapping_sub(0, 1) == MAX_UINT256
    True
    """
    return (a - b) % Q256


class Uint256(int):
    """Unsigned 256-bit integer whose +, - and * wrap modulo 2^256.

    Fee-growth accumulators are meant to overflow (Pool.sol relies on
    it), so every value of this type is kept in [0, 2^256).

    >>> Uint256(0) - Uint256(1) == MAX_UINT256
    True
    >>> Uint256(MAX_UINT256) + 1
    Uint256(0)
    """

    __slots__ = ()

    def __new__(cls, value: int = 0) -> "Uint256":
        return super().__new__(cls, int(value) % Q256)

    def __add__(self, other: int) -> "Uint256":
        return Uint256(int(self) + int(other))

    __radd__ = __add__

    def __sub__(self, other: int) -> "Uint256":
        return Uint256(int(self) - int(other))

    def __rsub__(self, other: int) -> "Uint256":
        return Uint256(int(other) - int(self))

    def __mul__(self, other: int) -> "Uint256":
        return Uint256(int(self) * int(other))

    __rmul__ = __mul__

    def __repr__(self) -> str:
        return f"Uint256({int(self)})"

    @classmethod
    def from_decimal(cls, value) -> "Uint256":
        """Parse a decimal string as returned by the subgraph (None/'' → 0)."""
        if value is None or value == "":
            return cls(0)
        return cls(int(value))
