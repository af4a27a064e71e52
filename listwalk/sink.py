"""Result sinks.

A result sink persists the full record sequence of one partition as a single
named artifact. It is invoked exactly once per partition, after the partition
has reached a terminal status.

Artifact names are built from a template with the partition key and the
record count, e.g. ``k_entries_42.csv``. An existing artifact is never
overwritten: a numeric suffix (``k_entries_42-1.csv``) is appended instead.
Every write goes to a temporary file in the output directory that is then
renamed into place, so a failed write leaves no partial artifact behind and
cannot damage artifacts flushed earlier.
"""

from __future__ import annotations

import csv
import json
import logging
import os
import re
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, TextIO

from listwalk.common.exceptions import SinkError
from listwalk.common.extraction import FieldSpec
from listwalk.config import CrawlConfiguration
from listwalk.data_types import ExtractedRecord, PartitionKey

logger = logging.getLogger(__name__)

DEFAULT_NAME_TEMPLATE = "{partition}_entries_{count}"

_UNSAFE_CHARS = re.compile(r"[^\w.+-]+")


class ResultSink(Protocol):
    """Protocol for sinks that persist one partition at a time."""

    def flush(
        self, partition_key: PartitionKey, records: list[ExtractedRecord]
    ) -> Path:
        """Persist *records* and return the artifact path.

        Raises:
            SinkError: If the records could not be persisted.
        """
        ...


def safe_name(value: str) -> str:
    """Make a string safe to use inside a file name."""
    cleaned = _UNSAFE_CHARS.sub("_", value).strip("._")
    return cleaned or "_"


class FileResultSink:
    """Base class for sinks that write one file per partition."""

    suffix = ""

    def __init__(
        self,
        output_dir: Path | str,
        name_template: str = DEFAULT_NAME_TEMPLATE,
        region: str | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.name_template = name_template
        self.region = region

    def artifact_name(self, partition_key: PartitionKey, count: int) -> str:
        stem = self.name_template.format(
            partition=safe_name(partition_key),
            count=count,
            region=safe_name(self.region or ""),
        )
        return stem + self.suffix

    def _unique_path(self, name: str) -> Path:
        candidate = self.output_dir / name
        if not candidate.exists():
            return candidate
        stem, suffix = name[: len(name) - len(self.suffix)], self.suffix
        counter = 1
        while True:
            candidate = self.output_dir / f"{stem}-{counter}{suffix}"
            if not candidate.exists():
                return candidate
            counter += 1

    def flush(
        self, partition_key: PartitionKey, records: list[ExtractedRecord]
    ) -> Path:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self._unique_path(
                self.artifact_name(partition_key, len(records))
            )
            fd, tmp_name = tempfile.mkstemp(
                dir=self.output_dir, prefix=".partial-", suffix=self.suffix
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                    self._write(f, records)
                # mkstemp creates owner-only files; match open()'s default
                umask = os.umask(0)
                os.umask(umask)
                os.chmod(tmp_name, 0o666 & ~umask)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, csv.Error, ValueError) as e:
            logger.error(
                f"Failed to persist partition '{partition_key}': {e}",
                extra={
                    "partition": partition_key,
                    "record_count": len(records),
                },
            )
            raise SinkError(partition_key, list(records), e) from e

        logger.info(
            f"Done! {len(records)} total entries saved to {path}",
            extra={
                "partition": partition_key,
                "record_count": len(records),
                "artifact": str(path),
            },
        )
        return path

    def _write(self, f: TextIO, records: list[ExtractedRecord]) -> None:
        raise NotImplementedError


class CsvResultSink(FileResultSink):
    """Writes each partition as a CSV file with a header of field titles."""

    suffix = ".csv"

    def __init__(
        self,
        output_dir: Path | str,
        fields: Sequence[FieldSpec],
        name_template: str = DEFAULT_NAME_TEMPLATE,
        region: str | None = None,
    ) -> None:
        super().__init__(output_dir, name_template, region)
        self.fields = tuple(fields)

    def _write(self, f: TextIO, records: list[ExtractedRecord]) -> None:
        writer = csv.writer(f)
        writer.writerow([spec.column_title for spec in self.fields])
        for record in records:
            writer.writerow([record.get(spec.name, "") for spec in self.fields])


class JsonlResultSink(FileResultSink):
    """Writes each partition as newline-delimited JSON."""

    suffix = ".jsonl"

    def _write(self, f: TextIO, records: list[ExtractedRecord]) -> None:
        for record in records:
            json.dump(record, f, ensure_ascii=False)
            f.write("\n")


def sink_from_config(config: CrawlConfiguration) -> FileResultSink:
    """Build the sink selected by ``config.output``."""
    output = config.output
    if output.format == "jsonl":
        return JsonlResultSink(
            output.dir, name_template=output.name_template, region=config.region
        )
    return CsvResultSink(
        output.dir,
        fields=config.field_specs,
        name_template=output.name_template,
        region=config.region,
    )


_COUNT_IN_NAME = re.compile(r"_(\d+)(?:-\d+)?\.(?:csv|jsonl)$")


def tally_artifacts(directory: Path | str) -> dict[str, int]:
    """Read record counts back from artifact names in *directory*.

    Returns:
        Mapping of artifact file name to the record count in its name, for
        every ``.csv``/``.jsonl`` file whose name ends in ``_<count>``.
        Files without a count are reported as 0.
    """
    counts: dict[str, int] = {}
    for path in sorted(Path(directory).iterdir()):
        if not path.is_file() or path.suffix not in (".csv", ".jsonl"):
            continue
        if path.name.startswith(".partial-"):
            continue
        match = _COUNT_IN_NAME.search(path.name)
        counts[path.name] = int(match.group(1)) if match else 0
    return counts
