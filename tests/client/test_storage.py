import json
import os
import stat

from oauthflow.client.services.storage import JSONFileStorage, MemoryStorage


class TestMemoryStorage:
    async def test_set_get_delete(self):
        # Arrange
        storage = MemoryStorage()

        # Act
        await storage.set("code_verifier", "v")
        await storage.set("oauth_state", "s")
        await storage.delete("code_verifier", "oauth_state", "missing")

        # Assert
        assert await storage.get("code_verifier") is None
        assert len(storage) == 0


class TestJSONFileStorage:
    async def test_value_survives_new_instance(self, tmp_path):
        # Arrange
        path = tmp_path / "nested" / "session.json"

        # Act
        await JSONFileStorage(path).set("access_token", "abc.def.ghi")

        # Assert
        assert await JSONFileStorage(path).get("access_token") == "abc.def.ghi"
        assert json.loads(path.read_text()) == {"access_token": "abc.def.ghi"}

    async def test_file_is_private(self, tmp_path):
        # Arrange
        path = tmp_path / "session.json"

        # Act
        await JSONFileStorage(path).set("access_token", "secret")

        # Assert
        mode = stat.S_IMODE(os.stat(path).st_mode)
        assert mode == 0o600

    async def test_delete_keeps_other_keys(self, tmp_path):
        # Arrange
        storage = JSONFileStorage(tmp_path / "session.json")
        await storage.set("access_token", "a")
        await storage.set("other", "b")

        # Act
        await storage.delete("access_token")

        # Assert
        assert await storage.get("access_token") is None
        assert await storage.get("other") == "b"

    async def test_corrupt_file_reads_as_empty(self, tmp_path):
        # Arrange
        path = tmp_path / "session.json"
        path.write_text("{not json")

        # Act & Assert
        assert await JSONFileStorage(path).get("access_token") is None

    async def test_no_temporary_files_left_behind(self, tmp_path):
        # Arrange
        storage = JSONFileStorage(tmp_path / "session.json")

        # Act
        await storage.set("access_token", "a")
        await storage.set("access_token", "b")

        # Assert
        assert [p.name for p in tmp_path.iterdir()] == ["session.json"]
