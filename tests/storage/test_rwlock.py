import threading
import time

from sluice.storage.locks import ReadWriteLock


class TestReadWriteLock:
    def test_readers_share_the_lock(self):
        # Arrange
        lock = ReadWriteLock()
        both_inside = threading.Barrier(2, timeout=2)
        errors: list[Exception] = []

        def reader():
            try:
                with lock.read():
                    both_inside.wait()
            except threading.BrokenBarrierError as e:
                errors.append(e)

        threads = [threading.Thread(target=reader) for _ in range(2)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert errors == []

    def test_writer_excludes_readers(self):
        # Arrange
        lock = ReadWriteLock()
        events: list[str] = []
        writer_inside = threading.Event()

        def writer():
            with lock.write():
                writer_inside.set()
                time.sleep(0.1)
                events.append("write-done")

        def reader():
            writer_inside.wait()
            with lock.read():
                events.append("read")

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert events == ["write-done", "read"]

    def test_writer_waits_for_active_reader(self):
        # Arrange
        lock = ReadWriteLock()
        events: list[str] = []
        reader_inside = threading.Event()

        def reader():
            with lock.read():
                reader_inside.set()
                time.sleep(0.1)
                events.append("read-done")

        def writer():
            reader_inside.wait()
            with lock.write():
                events.append("write")

        threads = [threading.Thread(target=reader), threading.Thread(target=writer)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert events == ["read-done", "write"]

    def test_lock_is_released_on_error(self):
        # Arrange
        lock = ReadWriteLock()

        # Act
        try:
            with lock.write():
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        # Assert
        with lock.write():
            pass
