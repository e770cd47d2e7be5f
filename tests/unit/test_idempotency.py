"""Idempotency key construction."""

from __future__ import annotations

from datetime import date

from gamify.scoring.idempotency import build_idempotency_key


class TestIdempotencyKey:
    def test_stable_across_metadata_order(self) -> None:
        a = build_idempotency_key("rating_submitted", 7, {"a": 1, "b": 2})
        b = build_idempotency_key("rating_submitted", 7, {"b": 2, "a": 1})
        assert a == b
        assert len(a) == 64

    def test_differs_by_user_type_and_entity(self) -> None:
        base = build_idempotency_key("comment_created", 1, {}, "post", 10)
        assert base != build_idempotency_key("comment_created", 2, {}, "post", 10)
        assert base != build_idempotency_key("rating_submitted", 1, {}, "post", 10)
        assert base != build_idempotency_key("comment_created", 1, {}, "post", 11)
        assert base != build_idempotency_key("comment_created", 1, {}, "recipe", 10)

    def test_date_scoped_types_include_local_date(self) -> None:
        monday = build_idempotency_key("login_success", 42, {}, local_date=date(2026, 3, 2))
        tuesday = build_idempotency_key("login_success", 42, {}, local_date=date(2026, 3, 3))
        assert monday != tuesday

    def test_other_types_ignore_local_date(self) -> None:
        monday = build_idempotency_key("rating_submitted", 42, {"r": 1}, local_date=date(2026, 3, 2))
        tuesday = build_idempotency_key("rating_submitted", 42, {"r": 1}, local_date=date(2026, 3, 3))
        assert monday == tuesday
