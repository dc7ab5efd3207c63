import threading

from conftest import FakeStore
from daycare_sync.etl import slugs
from daycare_sync.models import CanonicalRecord


def stored(name, slug, record_id):
    record = CanonicalRecord(name=name, slug=slug, id=record_id)
    return record


def test_base_slug():
    assert slugs.base_slug("Happy Kids!") == "happy-kids"
    assert slugs.base_slug("happy kids") == "happy-kids"
    assert slugs.base_slug("  Tiny   Tots -- Preschool ") == "tiny-tots-preschool"
    assert slugs.base_slug("!!!") == "daycare"


def test_allocator_suffixes_taken_slugs():
    store = FakeStore([stored("Happy Kids", "happy-kids", 1)])
    allocator = slugs.SlugAllocator(store)

    assert allocator.allocate("Happy Kids!") == "happy-kids-1"
    assert allocator.allocate("happy kids") == "happy-kids-2"


def test_allocator_ignores_own_record():
    store = FakeStore([stored("Happy Kids", "happy-kids", 1)])
    assert slugs.SlugAllocator(store).allocate("Happy Kids", record_id=1) == "happy-kids"


def test_release_frees_reservation():
    allocator = slugs.SlugAllocator(FakeStore())
    assert allocator.allocate("Little Stars") == "little-stars"
    allocator.release("little-stars")
    assert allocator.allocate("Little Stars") == "little-stars"


def test_concurrent_allocation_is_unique():
    allocator = slugs.SlugAllocator(FakeStore())
    results = []

    def worker():
        results.append(allocator.allocate("Little Stars"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(results)) == 8
    assert "little-stars" in results
