import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from itertools import combinations, product
from typing import Any, Iterable, Iterator, Optional, Sequence
import numpy as np

from amazing_emd.emd import EMD
from amazing_emd.events import Event
from amazing_emd.handlers import ExternalEMDHandler
from amazing_emd.status import EMDPairsStorage, EMDStatus, EMDStatusError

__all__ = ("PairwiseEMD", )

logger = logging.getLogger(__name__)

# Pairs submitted per worker ahead of completion
IN_FLIGHT_PER_THREAD = 4


def flat_index(i: int, j: int, n: int) -> int:
    """
    Position of pair i < j in the condensed upper triangle of an n x n matrix
    """
    return n*i - i*(i + 1)//2 + j - i - 1


class PairwiseEMD:
    """
    EMDs between all pairs of one collection of events, or between every
    event of one collection and every event of another

    With handlers registered nothing is stored and every EMD is handed to
    the handlers instead. Otherwise the EMDs end up in a dense matrix, or
    in the condensed upper triangle for a single collection when
    store_sym_emds_flattened is set.
    """

    def __init__(
        self,
        emd: Optional[EMD] = None,
        num_threads: int = -1,
        store_sym_emds_flattened: bool = True,
        throw_on_error: bool = False,
        print_every: int = 0,
        **emd_kwargs: Any,
    ) -> None:
        if emd is None:
            emd = EMD(**emd_kwargs)
        elif emd_kwargs:
            raise TypeError("pass either an EMD object or keyword arguments for one")
        if num_threads is None or num_threads == -1:
            num_threads = os.cpu_count() or 1
        if num_threads < 1:
            raise ValueError(f"num_threads must be positive or -1, got {num_threads}")

        self._emd = emd
        self.num_threads = num_threads
        self.store_sym_emds_flattened = store_sym_emds_flattened
        self.throw_on_error = throw_on_error
        self.print_every = print_every
        self._handlers: list[ExternalEMDHandler] = []
        self._lock = threading.Lock()
        self.clear()

    def clear(self) -> None:
        self.storage: Optional[EMDPairsStorage] = None
        self._emds: Optional[np.ndarray] = None
        self._statuses: Optional[np.ndarray] = None
        self._errors: dict[tuple[int, int], EMDStatus] = {}
        self._nevA = self._nevB = 0
        self._num_emds = 0
        self._num_done = 0
        self._duration = 0.0

    @property
    def emd_obj(self) -> EMD:
        return self._emd

    def preprocess(self, preprocessor: Any) -> "PairwiseEMD":
        self._emd.preprocess(preprocessor)
        return self

    def set_handler(self, handler: ExternalEMDHandler) -> "PairwiseEMD":
        self._handlers.append(handler)
        return self

    def description(self) -> str:
        handlers = ", ".join(type(handler).__name__ for handler in self._handlers) or "none"
        return (
            f"PairwiseEMD\n"
            f"  num_threads - {self.num_threads}\n"
            f"  store_sym_emds_flattened - {self.store_sym_emds_flattened}\n"
            f"  throw_on_error - {self.throw_on_error}\n"
            f"  handlers - {handlers}\n"
            f"\n{self._emd.description()}"
        )

    def compute(
        self,
        events_a: Sequence[Any],
        events_b: Optional[Sequence[Any]] = None,
        handlers: Optional[Iterable[ExternalEMDHandler]] = None,
        event_weights_a: Optional[Sequence[float]] = None,
        event_weights_b: Optional[Sequence[float]] = None,
    ) -> Optional[np.ndarray]:
        """
        Runs the computation, returns the EMDs unless they went to handlers

        Leaving out events_b (or passing events_a again) computes the pairs
        i < j within events_a.
        """
        t0 = time.time()
        self.clear()

        symmetric = events_b is None or events_b is events_a
        handlers = self._handlers + list(handlers or [])

        # Preprocess every event once, before any pair is started
        self._events_a = self._prepare(events_a)
        self._events_b = self._events_a if symmetric else self._prepare(events_b)
        self._nevA, self._nevB = len(self._events_a), len(self._events_b)
        self._weights_a = self._event_weights(event_weights_a, self._nevA)
        self._weights_b = self._weights_a if symmetric and event_weights_b is None \
            else self._event_weights(event_weights_b, self._nevB)
        self._active_handlers = handlers

        self._allocate(symmetric, bool(handlers))
        if symmetric:
            self._num_emds = self._nevA*(self._nevA - 1)//2
            pairs: Iterator[tuple[int, int]] = combinations(range(self._nevA), 2)
        else:
            self._num_emds = self._nevA*self._nevB
            pairs = product(range(self._nevA), range(self._nevB))

        logger.info("Computing %d EMDs with %d threads, storage %s", self._num_emds, self.num_threads, self.storage.name)
        first_failure = self._run(pairs)
        self._duration = time.time() - t0
        logger.info("Computed %d EMDs in %.2fs, %d failed", self._num_done, self._duration, len(self._errors))

        if first_failure is not None:
            i, j, status = first_failure
            raise EMDStatusError(status, (i, j))

        if self.storage == EMDPairsStorage.External:
            return None
        return self.emds()

    __call__ = compute

    def _prepare(self, events: Sequence[Any]) -> list[Event]:
        return [self._emd.apply_preprocessors(event) for event in events]

    @staticmethod
    def _event_weights(weights: Optional[Sequence[float]], n: int) -> np.ndarray:
        if weights is None:
            return np.ones(n)
        weights = np.asarray(weights, dtype=np.float64)
        if weights.shape != (n, ):
            raise ValueError(f"expected {n} event weights, got shape {weights.shape}")
        return weights

    def _allocate(self, symmetric: bool, external: bool) -> None:
        n_a, n_b = self._nevA, self._nevB
        if external:
            self.storage = EMDPairsStorage.External
        elif not symmetric:
            self.storage = EMDPairsStorage.Full
            self._emds = np.full((n_a, n_b), np.nan)
            self._statuses = np.zeros((n_a, n_b), dtype=np.int8)
        elif self.store_sym_emds_flattened:
            self.storage = EMDPairsStorage.FlattenedSymmetric
            self._emds = np.full(n_a*(n_a - 1)//2, np.nan)
            self._statuses = np.zeros(n_a*(n_a - 1)//2, dtype=np.int8)
        else:
            self.storage = EMDPairsStorage.FullSymmetric
            self._emds = np.full((n_a, n_a), np.nan)
            np.fill_diagonal(self._emds, 0.0)
            self._statuses = np.zeros((n_a, n_a), dtype=np.int8)

    def _thread_emd(self) -> EMD:
        # Every worker thread solves with its own EMD object
        local = self._local
        emd = getattr(local, "emd", None)
        if emd is None:
            emd = local.emd = self._emd.copy()
        return emd

    def _compute_pair(self, i: int, j: int) -> tuple[int, int, EMDStatus]:
        emd = self._thread_emd() if self.num_threads > 1 else self._emd
        result = emd.compute(self._events_a[i], self._events_b[j], preprocessed=True)
        self._store(i, j, result.status, result.distance)
        return i, j, result.status

    def _store(self, i: int, j: int, status: EMDStatus, distance: float) -> None:
        storage = self.storage
        if storage == EMDPairsStorage.Full:
            self._emds[i, j] = distance
            self._statuses[i, j] = status
        elif storage == EMDPairsStorage.FullSymmetric:
            self._emds[i, j] = self._emds[j, i] = distance
            self._statuses[i, j] = self._statuses[j, i] = status
        elif storage == EMDPairsStorage.FlattenedSymmetric:
            k = flat_index(i, j, self._nevA)
            self._emds[k] = distance
            self._statuses[k] = status

        if status == EMDStatus.Success:
            weight = self._weights_a[i] * self._weights_b[j]
            for handler in self._active_handlers:
                handler.handle(i, j, distance, weight)

        with self._lock:
            if status != EMDStatus.Success:
                self._errors[(i, j)] = status
            self._num_done += 1
            num_done = self._num_done
        if self.print_every and num_done % self.print_every == 0:
            logger.info("%d/%d EMDs computed", num_done, self._num_emds)

    def _run(self, pairs: Iterator[tuple[int, int]]) -> Optional[tuple[int, int, EMDStatus]]:
        """
        Computes all pairs, returns the first failure if throw_on_error is set
        """
        if self.num_threads == 1:
            for i, j in pairs:
                _, _, status = self._compute_pair(i, j)
                if self.throw_on_error and status != EMDStatus.Success:
                    return i, j, status
            return None

        self._local = threading.local()
        failures: list[tuple[int, int, EMDStatus]] = []
        max_in_flight = self.num_threads * IN_FLIGHT_PER_THREAD
        with ThreadPoolExecutor(max_workers=self.num_threads) as executor:
            in_flight: set[Future] = set()
            for pair in pairs:
                in_flight.add(executor.submit(self._compute_pair, *pair))
                if len(in_flight) >= max_in_flight:
                    done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                    failures.extend(self._failures(done))
                    if failures and self.throw_on_error:
                        break
            done, _ = wait(in_flight)
            failures.extend(self._failures(done))

        if failures and self.throw_on_error:
            return min(failures)
        return None

    @staticmethod
    def _failures(done: Iterable[Future]) -> list[tuple[int, int, EMDStatus]]:
        failures = []
        for future in done:
            i, j, status = future.result()
            if status != EMDStatus.Success:
                failures.append((i, j, status))
        return failures

    def emds(self, raw: bool = False) -> np.ndarray:
        """
        Stored EMDs, condensed storage is expanded to a full matrix unless raw
        """
        if self._emds is None:
            raise ValueError("no EMDs stored, they were passed to handlers" if self.storage else "nothing computed yet")
        if raw or self.storage != EMDPairsStorage.FlattenedSymmetric:
            return self._emds
        return self._unflatten(self._emds, 0.0)

    def statuses(self, raw: bool = False) -> np.ndarray:
        if self._statuses is None:
            raise ValueError("no statuses stored, see errors()")
        if raw or self.storage != EMDPairsStorage.FlattenedSymmetric:
            return self._statuses
        return self._unflatten(self._statuses, EMDStatus.Success)

    def _unflatten(self, flat: np.ndarray, diagonal: Any) -> np.ndarray:
        n = self._nevA
        full = np.empty((n, n), dtype=flat.dtype)
        upper = np.triu_indices(n, 1)
        full[upper] = flat
        full[upper[1], upper[0]] = flat
        np.fill_diagonal(full, diagonal)
        return full

    def emd(self, i: int, j: int) -> float:
        if self._emds is None:
            raise ValueError("no EMDs stored")
        if self.storage == EMDPairsStorage.FlattenedSymmetric:
            if i == j:
                return 0.0
            if i > j:
                i, j = j, i
            return float(self._emds[flat_index(i, j, self._nevA)])
        return float(self._emds[i, j])

    def errors(self) -> dict[tuple[int, int], EMDStatus]:
        with self._lock:
            return dict(self._errors)

    def nevA(self) -> int:
        return self._nevA

    def nevB(self) -> int:
        return self._nevB

    def num_emds(self) -> int:
        return self._num_emds

    def num_done(self) -> int:
        """
        EMDs actually computed in the last run, failed ones included
        """
        with self._lock:
            return self._num_done

    def duration(self) -> float:
        return self._duration
