import pytest

from renamer.config_utils import Settings
from renamer.database_manager import Database
from renamer.feedback import FeedbackTracker
from renamer.processor import ItemProcessor
from renamer.queue_store import QueueStore

from fakes import FakeProvider


@pytest.fixture
def settings(tmp_path):
    return Settings.model_validate(
        {
            "processing": {"parallel_files": 2, "enable_validation": False},
            "storage": {"database_path": str(tmp_path / "renamer.db")},
        }
    )


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "renamer.db")
    yield database
    database.close()


@pytest.fixture
def queue_store(db):
    return QueueStore(db)


@pytest.fixture
def tracker(db, queue_store):
    return FeedbackTracker(db, queue_store)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def processor(provider, settings):
    return ItemProcessor(provider, settings)


@pytest.fixture
def make_files(tmp_path):
    def _make(count, prefix="doc", suffix=".txt"):
        folder = tmp_path / "inbox"
        folder.mkdir(exist_ok=True)
        paths = []
        for index in range(1, count + 1):
            path = folder / f"{prefix}{index}{suffix}"
            path.write_text(f"Invoice number {index}\nAmount due: 42.00\n")
            paths.append(str(path))
        return paths

    return _make
