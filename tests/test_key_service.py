"""Tests for the public key service"""

import asyncio
import re

import pytest

from keyward.core.errors import (
    AccessFileError,
    DuplicateKeyError,
    InconsistentStateError,
    KeyFormatError,
    KeyNotFoundError,
    OracleError,
    WeakKeyError,
)
from tests.conftest import APP_PATH, CONFIG_PATH, FakeInspector, make_key_blob
from tests.test_parser import to_ssh2


def line_for(key_id: int, content: str) -> str:
    return (
        f'command="{APP_PATH} serv key-{key_id} --config=\'{CONFIG_PATH}\'",'
        f"no-port-forwarding,no-X11-forwarding,no-agent-forwarding,no-pty {content}"
    )


async def all_keys(service):
    return [key async for key in service.registry.iterate_all()]


class TestCheckKey:
    """Test parsing plus strength checks"""

    @pytest.mark.asyncio
    async def test_accepts_key(self, key_service, rsa_key):
        parsed = await key_service.check_key(rsa_key)

        assert parsed.key_type == "ssh-rsa"
        assert parsed.comment == "user@host"

    @pytest.mark.asyncio
    async def test_strength_check_sees_canonical_text(self, key_service, fake_inspector):
        blob = make_key_blob("ssh-rsa")

        await key_service.check_key(f"  ssh-rsa   {blob}   laptop  \r\n")

        assert fake_inspector.contents == [f"ssh-rsa {blob} laptop"]

    @pytest.mark.asyncio
    async def test_rejects_malformed_text(self, key_service, fake_inspector):
        with pytest.raises(KeyFormatError):
            await key_service.check_key("ssh-rsa definitely-not-a-key")

        assert fake_inspector.paths == []

    @pytest.mark.asyncio
    async def test_rejects_weak_key(self, key_service, fake_inspector, rsa_key):
        fake_inspector.output = "1024 SHA256:abc user@host (RSA)\n"

        with pytest.raises(WeakKeyError):
            await key_service.check_key(rsa_key)


class TestAddKey:
    """Test accepting and authorizing keys"""

    @pytest.mark.asyncio
    async def test_add_registers_and_authorizes(self, key_service, rsa_key):
        key = await key_service.add_key(1, "laptop", rsa_key)

        assert key.id is not None
        assert key.owner_id == 1
        assert key.name == "laptop"
        assert key.content == rsa_key
        assert key.fingerprint.startswith("SHA256:")
        assert key.omit_comment == rsa_key.rsplit(" ", 1)[0]
        assert not key.has_used

        assert await key_service.get_key(key.id) == key
        assert key_service.authorized_keys.read_lines() == [line_for(key.id, rsa_key)]

    @pytest.mark.asyncio
    async def test_add_ssh2_key_stores_canonical_form(self, key_service):
        blob = make_key_blob("ssh-ed25519")
        text = to_ssh2(blob, comment_lines=['Comment: "me@box"'])

        key = await key_service.add_key(1, "ssh2", text)

        assert key.content == f"ssh-ed25519 {blob}"
        assert key_service.authorized_keys.read_lines() == [line_for(key.id, key.content)]

    @pytest.mark.asyncio
    async def test_duplicate_name_for_owner(self, key_service):
        await key_service.add_key(1, "laptop", f"ssh-ed25519 {make_key_blob('ssh-ed25519')}")
        other = f"ssh-rsa {make_key_blob('ssh-rsa')}"

        with pytest.raises(DuplicateKeyError) as exc_info:
            await key_service.add_key(1, "laptop", other)

        assert exc_info.value.field == "name"
        assert len(await all_keys(key_service)) == 1
        assert len(key_service.authorized_keys.read_lines()) == 1

    @pytest.mark.asyncio
    async def test_same_name_for_other_owner(self, key_service):
        await key_service.add_key(1, "laptop", f"ssh-ed25519 {make_key_blob('ssh-ed25519')}")
        await key_service.add_key(2, "laptop", f"ssh-rsa {make_key_blob('ssh-rsa')}")

        assert len(key_service.authorized_keys.read_lines()) == 2

    @pytest.mark.asyncio
    async def test_duplicate_fingerprint_across_owners(self, key_service, rsa_key):
        await key_service.add_key(1, "laptop", rsa_key)

        with pytest.raises(DuplicateKeyError) as exc_info:
            await key_service.add_key(2, "stolen", rsa_key.replace("user@host", "other@host"))

        assert exc_info.value.field == "fingerprint"
        assert await key_service.list_keys(2) == []

    @pytest.mark.asyncio
    async def test_weak_key_is_not_persisted(self, key_service, fake_inspector, rsa_key):
        fake_inspector.output = "1024 SHA256:abc user@host (RSA)\n"

        with pytest.raises(WeakKeyError):
            await key_service.add_key(1, "old", rsa_key)

        assert await all_keys(key_service) == []
        assert not key_service.authorized_keys.path.exists()

    @pytest.mark.asyncio
    async def test_oracle_failure_is_not_persisted(self, key_service, fake_inspector, rsa_key):
        fake_inspector.error = OracleError("ssh-keygen -l -f", "is not a public key file")

        with pytest.raises(OracleError):
            await key_service.add_key(1, "laptop", rsa_key)

        assert await all_keys(key_service) == []

    @pytest.mark.asyncio
    async def test_failed_append_rolls_back_registry(self, key_service, rsa_key, monkeypatch):
        def broken_append(keys):
            raise AccessFileError("add", key_service.authorized_keys.path, "disk full")

        monkeypatch.setattr(key_service.authorized_keys, "append_lines", broken_append)

        with pytest.raises(AccessFileError):
            await key_service.add_key(1, "laptop", rsa_key)

        assert await all_keys(key_service) == []

        monkeypatch.undo()
        key = await key_service.add_key(1, "laptop", rsa_key)
        assert key_service.authorized_keys.read_lines() == [line_for(key.id, rsa_key)]

    @pytest.mark.asyncio
    async def test_failed_rollback_reports_inconsistent_state(
        self, key_service, rsa_key, monkeypatch
    ):
        def broken_append(keys):
            raise AccessFileError("add", key_service.authorized_keys.path, "disk full")

        async def broken_delete(key):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(key_service.authorized_keys, "append_lines", broken_append)
        monkeypatch.setattr(key_service.registry, "delete", broken_delete)

        with pytest.raises(InconsistentStateError) as exc_info:
            await key_service.add_key(1, "laptop", rsa_key)

        assert isinstance(exc_info.value.error, AccessFileError)
        assert isinstance(exc_info.value.rollback_error, RuntimeError)
        assert len(await all_keys(key_service)) == 1

    @pytest.mark.asyncio
    async def test_many_keys_accumulate(self, key_service):
        keys = []
        for i in range(5):
            blob = make_key_blob("ssh-ed25519", payload=bytes([i]) * 32)
            keys.append(await key_service.add_key(1, f"key {i}", f"ssh-ed25519 {blob} k{i}"))

        lines = key_service.authorized_keys.read_lines()
        assert lines == [line_for(k.id, k.content) for k in keys]
        assert [k.id for k in await key_service.list_keys(1)] == [k.id for k in keys]


class TestUpdateKey:
    """Test renaming keys"""

    @pytest.mark.asyncio
    async def test_rename(self, key_service, rsa_key):
        key = await key_service.add_key(1, "laptop", rsa_key)

        updated = await key_service.update_key(key.id, "work laptop")

        assert updated.name == "work laptop"
        assert updated.content == key.content
        assert updated.fingerprint == key.fingerprint
        assert updated.has_used
        assert key_service.authorized_keys.read_lines() == [line_for(key.id, rsa_key)]

    @pytest.mark.asyncio
    async def test_rename_to_same_name(self, key_service, rsa_key):
        key = await key_service.add_key(1, "laptop", rsa_key)

        assert (await key_service.update_key(key.id, "laptop")).name == "laptop"

    @pytest.mark.asyncio
    async def test_rename_to_taken_name(self, key_service, rsa_key):
        await key_service.add_key(1, "laptop", rsa_key)
        desktop = await key_service.add_key(
            1, "desktop", f"ssh-ed25519 {make_key_blob('ssh-ed25519')}"
        )

        with pytest.raises(DuplicateKeyError):
            await key_service.update_key(desktop.id, "laptop")

    @pytest.mark.asyncio
    async def test_rename_unknown_key(self, key_service):
        with pytest.raises(KeyNotFoundError):
            await key_service.update_key(42, "anything")


class TestDeleteKey:
    """Test revoking keys"""

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_line(self, key_service, rsa_key):
        keep = await key_service.add_key(1, "keep", f"ssh-ed25519 {make_key_blob('ssh-ed25519')}")
        drop = await key_service.add_key(1, "drop", rsa_key)

        deleted = await key_service.delete_key(drop.id)

        assert deleted.id == drop.id
        with pytest.raises(KeyNotFoundError):
            await key_service.get_key(drop.id)
        assert key_service.authorized_keys.read_lines() == [line_for(keep.id, keep.content)]

    @pytest.mark.asyncio
    async def test_delete_unknown_key(self, key_service):
        with pytest.raises(KeyNotFoundError):
            await key_service.delete_key(404)

    @pytest.mark.asyncio
    async def test_delete_when_line_already_gone(self, key_service, rsa_key):
        key = await key_service.add_key(1, "laptop", rsa_key)
        key_service.authorized_keys.path.write_text("")

        await key_service.delete_key(key.id)

        assert await all_keys(key_service) == []

    @pytest.mark.asyncio
    async def test_delete_next_to_non_utf8_line(self, key_service, rsa_key):
        key = await key_service.add_key(1, "laptop", rsa_key)
        with open(key_service.authorized_keys.path, "ab") as f:
            f.write(b"ssh-rsa AAAA legacy-admin@caf\xe9\n")

        await key_service.delete_key(key.id)

        assert await all_keys(key_service) == []
        assert key_service.authorized_keys.path.read_bytes() == b"ssh-rsa AAAA legacy-admin@caf\xe9\n"

    @pytest.mark.asyncio
    async def test_failed_line_removal_keeps_registry_row(self, key_service, rsa_key, monkeypatch):
        key = await key_service.add_key(1, "laptop", rsa_key)

        def broken_remove(key):
            raise AccessFileError("remove", key_service.authorized_keys.path, "read-only file system")

        monkeypatch.setattr(key_service.authorized_keys, "remove_line", broken_remove)

        with pytest.raises(AccessFileError):
            await key_service.delete_key(key.id)

        assert [k.id for k in await all_keys(key_service)] == [key.id]
        assert key_service.authorized_keys.read_lines() == [line_for(key.id, rsa_key)]

    @pytest.mark.asyncio
    async def test_failed_row_delete_leaves_no_access(self, key_service, rsa_key, monkeypatch):
        key = await key_service.add_key(1, "laptop", rsa_key)

        async def broken_delete(key):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(key_service.registry, "delete", broken_delete)

        with pytest.raises(RuntimeError):
            await key_service.delete_key(key.id)

        assert key_service.authorized_keys.read_lines() == []


class TestRebuild:
    """Test recomputing authorized_keys from the registry"""

    @pytest.mark.asyncio
    async def test_add_during_rebuild_keeps_its_line(self, key_service, rsa_key, monkeypatch):
        """An add racing the registry read appends after the rewrite"""
        await key_service.add_key(1, "laptop", rsa_key)
        late_key = f"ssh-ed25519 {make_key_blob('ssh-ed25519')} late@host"
        iterate_all = key_service.registry.iterate_all
        racing = []

        async def iterate_then_add():
            async for key in iterate_all():
                yield key
            racing.append(asyncio.ensure_future(key_service.add_key(2, "late", late_key)))
            await asyncio.sleep(0.2)

        monkeypatch.setattr(key_service.registry, "iterate_all", iterate_then_add)

        assert await key_service.rebuild_authorized_keys() == 1
        late = await racing[0]
        monkeypatch.undo()

        keys = await all_keys(key_service)
        assert [k.id for k in keys] == [keys[0].id, late.id]
        assert key_service.authorized_keys.read_lines() == [
            line_for(k.id, k.content) for k in keys
        ]

    @pytest.mark.asyncio
    async def test_concurrent_adds_and_rebuilds(self, key_service):
        contents = [
            f"ssh-ed25519 {make_key_blob('ssh-ed25519', payload=bytes([i + 1]) * 32)}"
            for i in range(12)
        ]

        await asyncio.gather(
            *(key_service.add_key(1, f"key{i}", c) for i, c in enumerate(contents)),
            *(key_service.rebuild_authorized_keys() for _ in range(4)),
        )

        keys = await all_keys(key_service)
        assert len(keys) == 12
        assert sorted(key_service.authorized_keys.read_lines()) == sorted(
            line_for(k.id, k.content) for k in keys
        )

    @pytest.mark.asyncio
    async def test_rebuild_restores_corrupted_file(self, key_service):
        keys = []
        for i in range(3):
            blob = make_key_blob("ssh-ed25519", payload=bytes([i + 1]) * 32)
            keys.append(await key_service.add_key(i, f"key{i}", f"ssh-ed25519 {blob}"))
        expected = key_service.authorized_keys.read_lines()
        key_service.authorized_keys.path.write_text("garbage\n" + expected[1] + "\n")

        count = await key_service.rebuild_authorized_keys()

        assert count == 3
        assert key_service.authorized_keys.read_lines() == expected

    @pytest.mark.asyncio
    async def test_rebuild_is_idempotent(self, key_service, rsa_key):
        await key_service.add_key(1, "laptop", rsa_key)

        await key_service.rebuild_authorized_keys()
        first = key_service.authorized_keys.path.read_bytes()
        await key_service.rebuild_authorized_keys()

        assert key_service.authorized_keys.path.read_bytes() == first

    @pytest.mark.asyncio
    async def test_rebuild_repairs_crash_between_steps(self, key_service, rsa_key, monkeypatch):
        """A key inserted without its line comes back on rebuild"""
        def broken_append(keys):
            raise AccessFileError("add", key_service.authorized_keys.path, "disk full")

        async def broken_delete(key):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(key_service.authorized_keys, "append_lines", broken_append)
        monkeypatch.setattr(key_service.registry, "delete", broken_delete)
        with pytest.raises(InconsistentStateError):
            await key_service.add_key(1, "laptop", rsa_key)
        monkeypatch.undo()

        await key_service.rebuild_authorized_keys()

        (key,) = await all_keys(key_service)
        assert key_service.authorized_keys.read_lines() == [line_for(key.id, rsa_key)]

    @pytest.mark.asyncio
    async def test_rebuild_empty_registry(self, key_service):
        assert await key_service.rebuild_authorized_keys() == 0
        assert key_service.authorized_keys.read_lines() == []


class TestFromSettings:
    """Test wiring the service from settings"""

    @pytest.mark.asyncio
    async def test_service_lifecycle(self, tmp_path, rsa_key):
        from keyward.application.services.key_service import PublicKeyService
        from keyward.core.config import Settings

        settings = Settings(
            _env_file=None,
            database_url=f"sqlite:///{tmp_path / 'svc.db'}",
            ssh_dir=tmp_path / "ssh",
            app_path="/opt/keyward/keyward",
            config_path="/opt/keyward/app.ini",
        )
        service = PublicKeyService.from_settings(settings, inspector=FakeInspector())

        async with service:
            key = await service.add_key(7, "laptop", rsa_key)

        line = (tmp_path / "ssh" / "authorized_keys").read_text()
        assert re.match(
            rf'^command="/opt/keyward/keyward serv key-{key.id} '
            r"--config='/opt/keyward/app.ini'\",",
            line,
        )
