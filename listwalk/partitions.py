"""Partition iteration.

A PartitionIterator produces the ordered, finite sequence of partition keys
for a run. The sequence is lazy and can be restarted from any key without
generating the keys before it, so a run can be resumed after a crash by
skipping partitions that were already completed.

Two rules are supported:

- A literal list of keys. Duplicates are dropped, keeping the first one.
- A generation rule: for every prefix, every string of ``min_length`` to
  ``max_length`` characters over an alphabet, shorter strings first and in
  alphabet order within a length.
  A key two overlapping prefixes can both produce is yielded once.

Example::

    iterator = PartitionIterator.generated("abc", min_length=1, max_length=2)
    list(iterator.keys())
    # ['a', 'b', 'c', 'aa', 'ab', 'ac', 'ba', ...]
    list(iterator.keys(start_at="ca"))
    # ['ca', 'cb', 'cc']
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from listwalk.common.exceptions import ConfigurationError
from listwalk.config import GeneratedPartitions, ListPartitions
from listwalk.data_types import PartitionKey


class PartitionIterator:
    """Base class for partition key sequences."""

    def keys(
        self, start_at: PartitionKey | None = None
    ) -> Iterator[PartitionKey]:
        """Yield keys in order, starting at *start_at* when given.

        Raises:
            ConfigurationError: If *start_at* is not part of the sequence.
        """
        raise NotImplementedError

    def count(self) -> int:
        """Total number of keys in the sequence."""
        raise NotImplementedError

    def __iter__(self) -> Iterator[PartitionKey]:
        return self.keys()

    @staticmethod
    def from_config(
        rule: ListPartitions | GeneratedPartitions,
    ) -> PartitionIterator:
        match rule:
            case ListPartitions():
                return LiteralPartitionIterator(rule.keys)
            case GeneratedPartitions():
                return GeneratedPartitionIterator(
                    alphabet=rule.alphabet,
                    min_length=rule.min_length,
                    max_length=rule.max_length,
                    prefixes=rule.prefixes,
                )
        raise ConfigurationError(f"Unknown partition rule: {rule!r}")

    @staticmethod
    def literal(keys: Sequence[PartitionKey]) -> LiteralPartitionIterator:
        return LiteralPartitionIterator(keys)

    @staticmethod
    def generated(
        alphabet: str,
        min_length: int = 1,
        max_length: int = 1,
        prefixes: Sequence[str] = ("",),
    ) -> GeneratedPartitionIterator:
        return GeneratedPartitionIterator(
            alphabet, min_length, max_length, prefixes
        )


class LiteralPartitionIterator(PartitionIterator):
    def __init__(self, keys: Sequence[PartitionKey]) -> None:
        # dict preserves first-seen order
        self._keys: tuple[PartitionKey, ...] = tuple(dict.fromkeys(keys))
        self._index = {key: i for i, key in enumerate(self._keys)}

    def keys(
        self, start_at: PartitionKey | None = None
    ) -> Iterator[PartitionKey]:
        start = 0
        if start_at is not None:
            if start_at not in self._index:
                raise ConfigurationError(
                    f"Start key '{start_at}' is not in the partition list"
                )
            start = self._index[start_at]
        return iter(self._keys[start:])

    def count(self) -> int:
        return len(self._keys)


class GeneratedPartitionIterator(PartitionIterator):
    """Keys generated from an alphabet, a length range and prefixes.

    Prefixes may overlap: with prefixes "k" and "ka", "kab" can come from
    either. Such a key is produced once, by the first prefix in order.
    """

    def __init__(
        self,
        alphabet: str,
        min_length: int = 1,
        max_length: int = 1,
        prefixes: Sequence[str] = ("",),
    ) -> None:
        if not alphabet or len(set(alphabet)) != len(alphabet):
            raise ConfigurationError(
                "alphabet must be non-empty without repeated characters"
            )
        if min_length < 0 or min_length > max_length:
            raise ConfigurationError(
                f"invalid length range {min_length}..{max_length}"
            )
        self.alphabet = alphabet
        self.min_length = min_length
        self.max_length = max_length
        self.prefixes: tuple[str, ...] = tuple(dict.fromkeys(prefixes))
        self._digit = {char: i for i, char in enumerate(alphabet)}
        # Earlier prefixes whose keys can collide with each prefix's keys
        self._shadowing: list[tuple[str, ...]] = [
            tuple(
                earlier
                for earlier in self.prefixes[:index]
                if earlier.startswith(prefix) or prefix.startswith(earlier)
            )
            for index, prefix in enumerate(self.prefixes)
        ]

    def count(self) -> int:
        base = len(self.alphabet)
        sizes = {
            len(prefix) + length
            for prefix in self.prefixes
            for length in range(self.min_length, self.max_length + 1)
        }
        total = 0
        for size in sizes:
            # Keys of one total size that share a prefix form a block;
            # blocks nested inside another prefix's block are not recounted.
            covering = [
                prefix
                for prefix in self.prefixes
                if self.min_length <= size - len(prefix) <= self.max_length
            ]
            total += sum(
                base ** (size - len(prefix))
                for prefix in covering
                if not any(
                    other != prefix and self._produces(other, prefix, size)
                    for other in covering
                )
            )
        return total

    def keys(
        self, start_at: PartitionKey | None = None
    ) -> Iterator[PartitionKey]:
        if start_at is None:
            return self._generate(0, self.min_length, None)
        prefix_index, length, digits = self._locate(start_at)
        return self._generate(prefix_index, length, digits)

    def _produces(
        self, prefix: str, key: str, size: int | None = None
    ) -> bool:
        """Whether *prefix* yields *key*, or every key of *size* starting
        with *key* when *size* is given."""
        if not key.startswith(prefix):
            return False
        suffix_length = (len(key) if size is None else size) - len(prefix)
        if not self.min_length <= suffix_length <= self.max_length:
            return False
        return all(char in self._digit for char in key[len(prefix) :])

    def _locate(self, key: PartitionKey) -> tuple[int, int, list[int]]:
        """Find the (prefix, length, digits) position of *key*.

        A key several prefixes can produce sits under the first of them.
        """
        for prefix_index, prefix in enumerate(self.prefixes):
            if self._produces(prefix, key):
                suffix = key[len(prefix) :]
                return (
                    prefix_index,
                    len(suffix),
                    [self._digit[char] for char in suffix],
                )
        raise ConfigurationError(
            f"Start key '{key}' cannot be produced by the partition rule"
        )

    def _generate(
        self,
        prefix_index: int,
        first_length: int,
        first_digits: list[int] | None,
    ) -> Iterator[PartitionKey]:
        for index in range(prefix_index, len(self.prefixes)):
            prefix = self.prefixes[index]
            shadowing = self._shadowing[index]
            lengths = range(
                first_length if index == prefix_index else self.min_length,
                self.max_length + 1,
            )
            for length in lengths:
                digits = (
                    first_digits
                    if index == prefix_index and length == first_length
                    else None
                )
                for suffix in self._odometer(length, digits):
                    key = prefix + suffix
                    if any(
                        self._produces(earlier, key) for earlier in shadowing
                    ):
                        continue
                    yield key

    def _odometer(
        self, length: int, start: list[int] | None
    ) -> Iterator[str]:
        """Yield every string of *length* characters from *start* onwards."""
        if length == 0:
            yield ""
            return
        digits = list(start) if start is not None else [0] * length
        base = len(self.alphabet)
        while True:
            yield "".join(self.alphabet[d] for d in digits)
            position = length - 1
            while position >= 0:
                digits[position] += 1
                if digits[position] < base:
                    break
                digits[position] = 0
                position -= 1
            if position < 0:
                return
