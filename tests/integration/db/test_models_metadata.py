from __future__ import annotations

from contractflow.database.db import Base
import contractflow.database.models  # noqa: F401


def test_model_metadata_contains_lifecycle_tables():
    expected = {
        "companies",
        "contractors",
        "clients",
        "contracts",
        "payments",
        "signatures",
        "contract_events",
        "usage_counters",
        "signing_attempts",
    }
    assert expected.issubset(set(Base.metadata.tables.keys()))


def test_payment_session_id_is_unique():
    payments = Base.metadata.tables["payments"]
    unique_sets = [
        {column.name for column in constraint.columns}
        for constraint in payments.constraints
        if constraint.__class__.__name__ == "UniqueConstraint"
    ]
    assert {"session_id"} in unique_sets
