"""Per-run Parquet result files.

One file per run id, so independently seeded runs (batch jobs) never share
a file and can be merged afterwards (see :mod:`pluginscan.merge`).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence, Union

import pyarrow as pa
import pyarrow.parquet as pq

from .records import INT_COLUMNS, ToyRecord, ToyTable

logger = logging.getLogger(__name__)


class ResultStore:
    """Location and format of plugin scan result files for one analysis."""

    def __init__(
        self,
        output_dir: Union[str, Path],
        name: str,
        scan_vars: Sequence[str],
        *,
        compression: str = "zstd",
    ) -> None:
        if len(scan_vars) not in (1, 2):
            raise ValueError(f"expected 1 or 2 scan variables, got {len(scan_vars)}")
        self.output_dir = Path(output_dir)
        self.name = name
        self.scan_vars = tuple(scan_vars)
        self.compression = compression

    @property
    def dim(self) -> int:
        return len(self.scan_vars)

    @property
    def prefix(self) -> str:
        return f"scan{self.dim}dPlugin_{self.name}_{'_'.join(self.scan_vars)}"

    @property
    def directory(self) -> Path:
        return self.output_dir / self.prefix

    def path(self, run: int) -> Path:
        return self.directory / f"{self.prefix}_run{int(run)}.parquet"

    def exists(self, run: int) -> bool:
        return self.path(run).is_file()

    def write(self, table: Union[ToyTable, Sequence[ToyRecord]], run: int) -> Path:
        """Write (overwrite) the result file of ``run``."""
        if not isinstance(table, ToyTable):
            table = ToyTable.from_records(table)
        arrays = {
            name: pa.array(table[name], type=pa.int64() if name in INT_COLUMNS else pa.float64())
            for name in table.columns
        }
        out = self.path(run)
        out.parent.mkdir(parents=True, exist_ok=True)
        pq.write_table(pa.table(arrays), out, compression=self.compression)
        logger.info("wrote %d toys to %s", len(table), out)
        return out

    def read(self, run: int) -> ToyTable:
        path = self.path(run)
        if not path.is_file():
            raise FileNotFoundError(f"no result file for run {run}: {path}")
        t = pq.read_table(path)
        return ToyTable({name: t.column(name).to_numpy() for name in t.column_names})


__all__ = ["ResultStore"]
