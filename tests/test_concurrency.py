import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from errors import BookInUseError, DuplicateLoanError, NotFoundError, OutOfStockError
from lending import LendingLedger


def run_together(count, func):
    """Run ``func(i)`` on ``count`` threads released at the same moment.

    Returns a list with either the result or the raised exception per call.
    """
    barrier = threading.Barrier(count)

    def call(i):
        barrier.wait()
        try:
            return func(i)
        except Exception as e:  # collected for the assertions
            return e

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(call, range(count)))


@pytest.fixture
def shared_ledger(db_file):
    return LendingLedger(db_file)


def test_concurrent_issues_never_oversell(shared_ledger):
    copies, callers = 4, 12
    book = shared_ledger.add_book("Hot Release", "Author", copies)

    results = run_together(callers, lambda i: shared_ledger.issue_book(i + 1, book.id))

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == copies
    assert len(failures) == callers - copies
    assert all(isinstance(f, OutOfStockError) for f in failures)
    assert shared_ledger.get_book(book.id).available == 0
    assert len({r.user_id for r in successes}) == copies


def test_concurrent_issues_by_one_user_create_one_loan(shared_ledger):
    book = shared_ledger.add_book("Shared", "Author", 5)

    results = run_together(8, lambda i: shared_ledger.issue_book(1, book.id))

    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert all(isinstance(r, DuplicateLoanError) for r in results if isinstance(r, Exception))
    assert shared_ledger.get_book(book.id).available == 4


def test_concurrent_returns_of_one_issue_count_once(shared_ledger):
    book = shared_ledger.add_book("Returned", "Author", 1)
    record = shared_ledger.issue_book(1, book.id)

    results = run_together(6, lambda i: shared_ledger.return_book(record.id))

    assert results.count(None) == 1
    assert sum(isinstance(r, Exception) for r in results) == 5
    assert shared_ledger.get_book(book.id).available == 1


def test_delete_racing_issues_stays_consistent(shared_ledger):
    book = shared_ledger.add_book("Contested", "Author", 3)

    def act(i):
        if i == 0:
            return shared_ledger.delete_book(book.id)
        return shared_ledger.issue_book(i, book.id)

    results = run_together(5, act)
    issued = [r for r in results[1:] if not isinstance(r, Exception)]

    if isinstance(results[0], BookInUseError):
        # some issue won the race, the book stays
        assert issued
        assert shared_ledger.get_book(book.id).available == 3 - len(issued)
    else:
        # the delete ran first, so every issue saw no book
        assert results[0] is None
        assert issued == []
        assert all(isinstance(r, NotFoundError) for r in results[1:])
        assert shared_ledger.list_books() == []
        assert shared_ledger.list_all_issues() == []


def test_mixed_traffic_on_two_books_keeps_counts(shared_ledger):
    books = [shared_ledger.add_book(f"Book {n}", "Author", 3) for n in range(2)]

    def borrow_and_return(i):
        book = books[i % 2]
        for _ in range(5):
            try:
                record = shared_ledger.issue_book(i + 1, book.id)
            except OutOfStockError:
                continue
            shared_ledger.return_book(record.id)

    results = run_together(8, borrow_and_return)

    assert results == [None] * 8
    for book in books:
        current = shared_ledger.get_book(book.id)
        assert current.available == current.quantity == 3
    assert all(not r.is_active for r in shared_ledger.list_all_issues())
