"""
Run ledger for Cloud Atlas.

This module records every dispatched payload and its outcome in DuckDB so a
run can be inspected or reproduced later.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import duckdb

from ..models import Payload

_COLUMNS = [
    "run_id", "request_id", "flow", "source", "provider", "model",
    "payload", "response", "success", "error_message", "execution_time_ms", "called_at",
]


class RunLedger:
    """
    Manages the DuckDB database that records flow runs.
    """

    def __init__(self, db_path: str = "cloudatlas.db"):
        """
        Initialize the run ledger.

        Args:
            db_path: Path to the DuckDB database file
        """
        self.db_path = db_path
        self.connection = None

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        self.initialize_database()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def initialize_database(self):
        """
        Create the ledger tables if they don't exist.
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        self.connection.execute("CREATE SEQUENCE IF NOT EXISTS run_id_seq;")
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS flow_runs (
                run_id BIGINT PRIMARY KEY DEFAULT nextval('run_id_seq'),
                request_id VARCHAR NOT NULL,
                flow VARCHAR,
                source VARCHAR,
                provider VARCHAR NOT NULL,
                model VARCHAR,
                payload TEXT NOT NULL,
                response TEXT,
                success BOOLEAN NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                called_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    def log_flow_run(
        self,
        payload: Payload,
        response: Optional[str],
        success: bool,
        flow: Optional[str] = None,
        source: Optional[str] = None,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None
    ) -> None:
        """
        Record one dispatch.

        Args:
            payload: The payload that was sent
            response: The response text, if any
            success: Whether the dispatch succeeded
            flow: Name of the flow, or None for canvas and interactive runs
            source: The note or canvas the run was started from
            error_message: Error description on failure
            execution_time_ms: Wall time of the dispatch
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        self.connection.execute("""
            INSERT INTO flow_runs
                (request_id, flow, source, provider, model, payload, response,
                 success, error_message, execution_time_ms)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            payload.request_id,
            flow,
            source,
            payload.provider,
            payload.model,
            json.dumps(payload.to_wire()),
            response,
            success,
            error_message,
            execution_time_ms,
        ])

    def get_flow_runs(
        self,
        flow: Optional[str] = None,
        request_id: Optional[str] = None,
        success_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Retrieve recorded runs, newest first.

        Args:
            flow: Filter by flow name (optional)
            request_id: Filter by request id (optional)
            success_only: Only return successful runs
            limit: Limit number of results

        Returns:
            List of run records
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        query = f"SELECT {', '.join(_COLUMNS)} FROM flow_runs WHERE 1=1"
        params: List[Any] = []

        if flow:
            query += " AND flow = ?"
            params.append(flow)

        if request_id:
            query += " AND request_id = ?"
            params.append(request_id)

        if success_only:
            query += " AND success = true"

        query += " ORDER BY run_id DESC"

        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        results = self.connection.execute(query, params).fetchall()
        return [dict(zip(_COLUMNS, row)) for row in results]

    def reproduce_payload(self, run_id: int) -> Optional[Payload]:
        """
        Rebuild the payload of a recorded run.

        Args:
            run_id: The ID of the run

        Returns:
            The payload, or None if the run is unknown
        """
        if not self.connection:
            raise RuntimeError("Database connection not established")

        row = self.connection.execute(
            "SELECT payload FROM flow_runs WHERE run_id = ?", [run_id]
        ).fetchone()

        if not row:
            logging.warning(f"No recorded run with id {run_id}")
            return None
        return Payload.model_validate(json.loads(row[0]))
