from sqlalchemy.orm import Session

from bookvault.models.book import Book
from bookvault.schemas.purchases import ContentLocator
from bookvault.services.errors import BookNotFound


class CatalogService:
    """Read-only view of the books table used by the purchase flow."""

    def __init__(self, db: Session):
        self.db = db

    def get_book(self, book_id: str) -> Book | None:
        book_id = (book_id or "").strip()
        if not book_id:
            return None
        return self.db.query(Book).filter(Book.id == book_id).one_or_none()

    def require_book(self, book_id: str) -> Book:
        book = self.get_book(book_id)
        if book is None:
            raise BookNotFound(f"Book {book_id!r} not found", book_id=book_id)
        return book

    def resolve_locator(self, book_id: str) -> ContentLocator:
        """Blob reference + encryption parameters for a book. Raises BookNotFound."""
        book = self.require_book(book_id)
        return ContentLocator(
            book_id=book.id,
            blob_id=book.blob_id,
            encryption_iv=book.file_encryption_iv,
            encryption_tag=book.file_encryption_tag,
            mime_type=book.mime_type,
            file_name=book.file_name,
        )
