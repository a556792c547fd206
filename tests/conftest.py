"""
Shared fixtures. Settings are read at import time, so the environment is
filled before anything from bookvault is imported.
"""
import base64
import os

TEST_ENCRYPTION_KEY = bytes(range(32))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("TELEGRAM_WEBHOOK_SECRET", "webhook-secret")
os.environ.setdefault("BOOK_ENCRYPTION_KEY", base64.b64encode(TEST_ENCRYPTION_KEY).decode("ascii"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from bookvault.db.base import Base
from bookvault.models.book import Book
from bookvault.models.purchase import Purchase  # noqa: F401  (registers the table)
from bookvault.services.encryption import BookCipher

BOOK_PLAINTEXT = b"%PDF-1.7\nThe Stars Were Paid For\n" + bytes(range(256)) * 4


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'bookvault.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cipher():
    return BookCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def encrypted_book(db, cipher):
    """Book "b1" in the catalog; returns (book_id, blob_id, ciphertext)."""
    sealed = cipher.encrypt(BOOK_PLAINTEXT)
    db.add(
        Book(
            id="b1",
            title="The Stars Were Paid For",
            author="A. Author",
            price_stars=50,
            blob_id="blob-b1",
            file_encryption_iv=sealed.iv_b64,
            file_encryption_tag=sealed.auth_tag_b64,
            mime_type="application/pdf",
            file_name="stars.pdf",
        )
    )
    db.commit()
    return "b1", "blob-b1", sealed.encrypted_data


@pytest.fixture
def book_plaintext():
    return BOOK_PLAINTEXT
