# models.py
# plain containers passed between the catalog, executor and session layers
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class TableField:
    name: str
    type: str
    mode: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"name": self.name, "type": self.type}
        if self.mode:
            out["mode"] = self.mode
        if self.description:
            out["description"] = self.description
        return out


@dataclass(frozen=True)
class TableSchema:
    fields: Tuple[TableField, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"fields": [f.to_dict() for f in self.fields]}


@dataclass
class Table:
    id: str
    name: str
    schema: Optional[TableSchema] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "schema": self.schema.to_dict() if self.schema else None,
        }


@dataclass
class Dataset:
    id: str
    tables: List[Table] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "tables": [t.to_dict() for t in self.tables]}


@dataclass
class QueryResult:
    columns: List[str]
    rows: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"columns": self.columns, "rows": self.rows}


@dataclass(frozen=True)
class QueryLog:
    """One submitted request. sql_query is the literal text that was submitted."""
    timestamp: datetime
    natural_query: str
    sql_query: str
    status: str   # "success" | "error"
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "timestamp": self.timestamp.isoformat(),
            "naturalQuery": self.natural_query,
            "sqlQuery": self.sql_query,
            "status": self.status,
        }
        if self.error is not None:
            out["error"] = self.error
        return out
