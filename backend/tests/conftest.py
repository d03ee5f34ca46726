from datetime import datetime

import pytest
from cryptography.fernet import Fernet

from loganalyzer.integrations.secret_store import FernetSecretStore
from loganalyzer.models.schemas import LogRecord
from loganalyzer.storage.sqlite_gateway import SQLiteGateway


def completion(content, prompt_tokens=10, completion_tokens=5):
    """Build an OpenAI-compatible chat-completions envelope."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def make_record(message, level="INFO", timestamp=None):
    return LogRecord(timestamp=timestamp or datetime(2024, 5, 1, 12, 0, 0), level=level, message=message)


@pytest.fixture
def sqlite_gateway(tmp_path):
    gateway = SQLiteGateway(db_path=str(tmp_path / "logs.db"))
    gateway.initialize_schema()
    yield gateway
    gateway.close()


@pytest.fixture
def secrets(tmp_path):
    return FernetSecretStore(
        master_key=Fernet.generate_key().decode(),
        dev_key_path=str(tmp_path / ".fernet_dev_key"),
    )


@pytest.fixture
def message_log(sqlite_gateway):
    """Records for a message that was sent for user id 111 but not for 222."""
    rows = [
        (datetime(2024, 5, 1, 10, 0, 0), "INFO", "start send message for userName=bob and id=111"),
        (datetime(2024, 5, 1, 10, 0, 2), "INFO", "message send completed for id=111"),
        (datetime(2024, 5, 1, 10, 5, 0), "INFO", "start send message for userName=eve and id=222"),
        (datetime(2024, 5, 1, 10, 5, 1), "ERROR", "message send failed for id=222"),
    ]
    for ts, level, message in rows:
        sqlite_gateway.save_record(LogRecord(timestamp=ts, level=level, message=message))
    return sqlite_gateway
