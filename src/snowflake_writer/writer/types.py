"""
Result and state types shared by the adapter, the writer and the CLI.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class LoadState(Enum):
    IDLE = 'idle'
    STAGING_CREATED = 'staging_created'
    DATA_LOADED = 'data_loaded'
    SWAPPED = 'swapped'
    MERGED = 'merged'
    CLEANED_UP = 'cleaned_up'
    DONE = 'done'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (LoadState.DONE, LoadState.FAILED)


@dataclass
class LoadResult:
    """Outcome of loading one table"""

    table_name: str
    success: bool
    rows_loaded: int = 0
    duration: float = 0.0
    incremental: bool = False
    state: LoadState = LoadState.IDLE
    error: Optional[str] = None
    error_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        if self.success:
            mode = 'incremental' if self.incremental else 'full'
            return f'✅ Loaded {self.rows_loaded} rows to {self.table_name} ({mode}) in {self.duration:.2f}s'
        return f'❌ Failed to load to {self.table_name}: {self.error}'
