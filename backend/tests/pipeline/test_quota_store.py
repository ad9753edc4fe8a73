"""Tests for tier quotas and the SQLite prompt store."""

import pytest

from promptvault.categorizer.heuristics import heuristic_categorization
from promptvault.db.connection import Database
from promptvault.importer.errors import QuotaExceededError, StoreError
from promptvault.importer.quota import (
    UNLIMITED,
    QuotaUsage,
    Tier,
    TierQuotaService,
    apply_quota,
    load_tiers,
)
from promptvault.models import CategorizedPrompt, SourceKind
from tests.fixtures import make_prompt


def categorized(content: str, **kwargs) -> CategorizedPrompt:
    prompt = make_prompt(content, **kwargs)
    return CategorizedPrompt.from_parts(prompt, heuristic_categorization(prompt))


class TestApplyQuota:

    def test_unlimited_accepts_all(self):
        decision = apply_quota(list(range(10)), UNLIMITED, "limit")
        assert decision.accepted == list(range(10))
        assert decision.warning is None

    def test_partial_import_keeps_first_prompts(self):
        decision = apply_quota(list(range(10)), 3, "3 prompt limit for the free tier")
        assert decision.accepted == [0, 1, 2]
        assert decision.dropped == 7
        assert decision.warning == (
            "Only 3 of 10 prompts imported due to the 3 prompt limit for the free tier; "
            "7 prompts were skipped."
        )

    def test_enough_room(self):
        decision = apply_quota([1, 2], 5, "limit")
        assert decision.accepted == [1, 2]
        assert decision.dropped == 0

    def test_no_room_raises(self):
        with pytest.raises(QuotaExceededError) as exc:
            apply_quota([1, 2], 0, "50 prompt limit for the free tier")
        assert str(exc.value) == (
            "You've reached the 50 prompt limit for the free tier. "
            "Please upgrade to import more prompts."
        )
        assert exc.value.limit is None
        assert exc.value.current is None

    def test_no_room_reports_tier_usage(self):
        with pytest.raises(QuotaExceededError) as exc:
            apply_quota([1, 2], 0, "50 prompt limit for the free tier",
                        QuotaUsage(limit=50, used=50))
        assert exc.value.limit == 50
        assert exc.value.current == 50


class TestTiers:

    def test_packaged_tiers(self):
        tiers = load_tiers()
        assert tiers["free"].prompt_limit == 50
        assert tiers["pro"].prompt_limit == UNLIMITED
        assert tiers["enterprise"].prompt_limit == UNLIMITED

    def test_custom_tiers_file(self, tmp_path):
        path = tmp_path / "tiers.yml"
        path.write_text("free:\n  limits:\n    prompts: 5\nteam: {}\n")
        tiers = load_tiers(path)
        assert tiers["free"] == Tier(key="free", name="Free", prompt_limit=5)
        assert tiers["team"].prompt_limit == UNLIMITED

    async def test_remaining_slots_follow_stored_prompts(self, store):
        quota = TierQuotaService(store, tiers={"free": Tier("free", "Free", 3)})
        assert await quota.remaining_slots("u1") == 3
        await store.insert_prompt("u1", categorized("one"))
        await store.insert_prompt("u1", categorized("two"))
        await store.insert_prompt("u2", categorized("other user"))
        assert await quota.remaining_slots("u1") == 1
        assert await quota.describe_limit("u1") == "3 prompt limit for the free tier"
        assert await quota.usage("u1") == QuotaUsage(limit=3, used=2)

    async def test_paid_tier_unlimited(self, store):
        await store.set_user_tier("u1", "pro")
        quota = TierQuotaService(store)
        assert await quota.remaining_slots("u1") == UNLIMITED
        assert await quota.describe_limit("u1") == "unlimited prompt limit for the pro tier"

    async def test_unknown_tier_falls_back_to_free(self, store, caplog):
        await store.set_user_tier("u1", "platinum")
        quota = TierQuotaService(store)
        assert (await quota.tier_for("u1")).key == "free"
        assert "Unknown tier 'platinum'" in caplog.text

    async def test_custom_tier_lookup(self, store):
        async def lookup(user_id):
            return "enterprise"

        quota = TierQuotaService(store, tier_lookup=lookup)
        assert await quota.remaining_slots("anyone") == UNLIMITED


class TestSQLitePromptStore:

    async def test_insert_and_find(self, store):
        prompt = categorized("Explain generators in Python", source=SourceKind.CHATGPT)
        prompt_id = await store.insert_prompt("u1", prompt, folder="Learning", tags=["imported"])

        existing = await store.find_existing_for_duplicate_check("u1")
        assert [p.id for p in existing] == [prompt_id]
        assert existing[0].content == "Explain generators in Python"
        assert existing[0].folder == "Learning"
        assert existing[0].metadata["source"] == "chatgpt"

    async def test_tags_merged(self, store, db):
        prompt = categorized("Why does my Python code throw an error?")
        prompt_id = await store.insert_prompt("u1", prompt, tags=["imported", "Python"])
        row = await db.fetchone("SELECT tags, folder FROM prompts WHERE prompt_id = ?", (prompt_id,))
        assert row["tags"] == '["Python","Question","imported"]'
        assert row["folder"] == "File Imports"

    async def test_find_respects_limit_and_user(self, store):
        for i in range(5):
            await store.insert_prompt("u1", categorized(f"prompt {i}"))
        await store.insert_prompt("u2", categorized("not mine"))
        assert len(await store.find_existing_for_duplicate_check("u1", limit=3)) == 3
        assert await store.count_prompts("u1") == 5
        assert await store.count_prompts("nobody") == 0

    async def test_default_and_updated_tier(self, store):
        assert await store.get_user_tier("u1") == "free"
        await store.set_user_tier("u1", "pro")
        await store.set_user_tier("u1", "enterprise")
        assert await store.get_user_tier("u1") == "enterprise"

    async def test_database_errors_wrapped(self, store, db):
        await db.execute("DROP TABLE prompts")
        with pytest.raises(StoreError):
            await store.insert_prompt("u1", categorized("no table"))


class TestDatabase:

    async def test_file_database_created_with_schema(self, tmp_path):
        path = tmp_path / "nested" / "vault.db"
        db = await Database.connect(str(path))
        try:
            assert path.exists()
            inserted = await db.execute(
                "INSERT INTO user_tiers (user_id, tier, updated_at) VALUES (?, ?, ?)",
                ("u1", "pro", "2024-01-01T00:00:00+00:00"),
            )
            assert inserted == 1
            assert await db.fetchval("SELECT COUNT(*) FROM user_tiers") == 1
            assert await db.fetchval("SELECT MAX(rowid) FROM prompts") == 0
        finally:
            await db.close()
