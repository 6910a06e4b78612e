from models import ROLE_ADMIN, ROLE_BORROWER, Book, IssueRecord, User


def test_book_on_loan_and_dict():
    book = Book(id=3, title="Dune", author="Frank Herbert", quantity=4, available=1)
    assert book.on_loan == 3
    assert book.to_dict() == {"id": 3, "title": "Dune", "author": "Frank Herbert", "quantity": 4, "available": 1}
    # plain dataclass repr, no custom formatting
    assert str(book) == "Book(id=3, title='Dune', author='Frank Herbert', quantity=4, available=1)"


def test_issue_record_active_until_returned():
    record = IssueRecord(id=1, user_id=2, book_id=3, issue_date="2025-01-01T00:00:00.000000+00:00")
    assert record.is_active
    record.return_date = "2025-01-02T00:00:00.000000+00:00"
    assert not record.is_active


def test_user_roles():
    assert User(id=1, username="admin", role=ROLE_ADMIN, full_name="Admin").is_admin
    assert not User(id=2, username="bob", role=ROLE_BORROWER, full_name="Bob").is_admin
