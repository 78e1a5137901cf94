#
# Copyright (c) 2026 The pgdumpsync authors
#
# This file is part of pgdumpsync (PostgreSQL dump synchronizer).
#
# pgdumpsync is open source software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License as
# published by the Free Software Foundation; either version 3 of
# the License, or (at your option) any later version.
#
"""
Copy one byte stream to several consumers concurrently (like tee(1)).

Each consumer runs in its own thread and is fed through a bounded queue.
When any queue is full the reader blocks, so a slow consumer slows the
producer down and nothing is ever dropped.

A consumer that raises is not fed any more, but its queue keeps being
drained so the other consumers still see every byte. Its exception is
returned by run().

Usage:

    tee = StreamTee(proc.stdout, [fingerprinter.update, fh.write])
    errors = tee.run()
"""
import queue
import threading
from typing import BinaryIO, Callable, Optional, Sequence

CHUNK_SIZE = 64 * 1024
QUEUE_SIZE = 8

_EOF = object()


class StreamTee:
    def __init__(self, source: BinaryIO,
                 consumers: Sequence[Callable[[bytes], object]],
                 chunk_size: int = CHUNK_SIZE,
                 queue_size: int = QUEUE_SIZE):
        if not consumers:
            raise ValueError("StreamTee needs at least one consumer")

        self.source = source
        self.consumers = list(consumers)
        self.chunk_size = chunk_size
        self.queue_size = queue_size

        self.size = 0
        self.errors: list[Optional[Exception]] = [None] * len(self.consumers)

    def _consume(self, i: int, consumer: Callable[[bytes], object], q: queue.Queue) -> None:
        while True:
            chunk = q.get()
            if chunk is _EOF:
                return

            if self.errors[i] is not None:
                continue

            try:
                consumer(chunk)
            except Exception as e:
                self.errors[i] = e

    def run(self) -> list[Optional[Exception]]:
        """Copy source to every consumer until EOF.

        Returns the per-consumer exceptions (None for success). Errors
        reading the source propagate.
        """
        read = getattr(self.source, 'read1', self.source.read)

        queues: list[queue.Queue] = []
        threads = []
        for i, consumer in enumerate(self.consumers):
            q: queue.Queue = queue.Queue(maxsize=self.queue_size)
            t = threading.Thread(target=self._consume, args=(i, consumer, q),
                                 daemon=True)
            t.start()

            queues.append(q)
            threads.append(t)

        while True:
            chunk = read(self.chunk_size)
            if not chunk:
                break

            self.size += len(chunk)
            for q in queues:
                q.put(chunk)

        for q in queues:
            q.put(_EOF)

        for t in threads:
            t.join()

        return self.errors
