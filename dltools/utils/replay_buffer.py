"""
Experience replay buffer shared by the DQL, PPO, GAN and supervised trainers.

Records are stored per named field in preallocated NumPy arrays. The buffer is
a ring: once it is full, new records overwrite the oldest ones. Sampling works
in logical (insertion) order, so a time offset of 1 always refers to the record
inserted right after the current one and never to a record that only happens
to sit next to it after the ring wrapped around.
"""

from collections import namedtuple

import numpy as np

from dltools.utils.errors import InsufficientData, ShapeMismatch, UnknownField

# (field to read, time offset from the sampled record, name in the result)
Fetch = namedtuple('Fetch', ['source', 'offset', 'output'])


def _integral(value, what):
    """Convert value to int, rejecting fractional numbers and booleans."""
    if isinstance(value, bool) or int(value) != value:
        raise ValueError(f"{what} must be an integer, got {value!r}")
    return int(value)


class DataInfo:
    """
    Declaration of one buffer field.

    Args:
        name: Field name, e.g. 'State'
        size: Number of elements each record holds for this field
        dtype: NumPy dtype of the stored values
    """
    def __init__(self, name, size, dtype=np.float32):
        size = _integral(size, f"Size of field '{name}'")
        if size <= 0:
            raise ValueError(f"Field '{name}' needs a positive size, got {size}")
        self.name = name
        self.size = size
        self.dtype = np.dtype(dtype)

    def __repr__(self):
        return f"DataInfo({self.name!r}, {self.size}, {self.dtype.name})"


class ReplayBuffer:
    """
    Fixed-capacity ring buffer of named numeric fields.

    Example:
        buffer = ReplayBuffer(10000, DataInfo('State', 4), DataInfo('Reward', 1))
        buffer.add_data(State=states, Reward=rewards)
        batch = buffer.random_sample(64, [('State', 0, 'State'), ('State', 1, 'NextState')])
    """

    def __init__(self, capacity, *data_infos, rng=None):
        if int(capacity) <= 0:
            raise ValueError(f"Buffer capacity must be positive, got {capacity}")
        if not data_infos:
            raise ValueError("A replay buffer needs at least one field")

        self.capacity = int(capacity)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.data_infos = {}
        self.buffer = {}
        for info in data_infos:
            if not isinstance(info, DataInfo):
                info = DataInfo(*info)
            if info.name in self.data_infos:
                raise ValueError(f"Field '{info.name}' declared twice")
            self.data_infos[info.name] = info
            self.buffer[info.name] = np.zeros((self.capacity, info.size), dtype=info.dtype)

        self._next_index = 0
        self._count = 0

    @property
    def current_count(self):
        """Number of records currently stored, at most the capacity."""
        return self._count

    def __len__(self):
        return self._count

    def is_ready(self, batch_size):
        """Check if the buffer holds at least batch_size records."""
        return self._count >= batch_size

    def _get_info(self, name):
        if name not in self.data_infos:
            raise UnknownField(f"Unknown field '{name}', buffer has {list(self.data_infos)}")
        return self.data_infos[name]

    def add_data(self, data=None, **fields):
        """
        Append records for one or more fields.

        The number of new records is inferred from each array's length divided
        by the field size and must be the same for every field in the call.
        Declared fields that are not given are filled with zeros.

        Args:
            data: Mapping (or iterable of pairs) from field name to values
            **fields: Field values given as keyword arguments

        Returns:
            Number of records written
        """
        items = dict(data) if data is not None else {}
        items.update(fields)
        if not items:
            raise ValueError("add_data called without any field")

        arrays = {}
        num_records = None
        for name, values in items.items():
            info = self._get_info(name)
            if values is None:
                raise ShapeMismatch(f"Field '{name}' was given None instead of values")
            flat = np.asarray(values, dtype=info.dtype).reshape(-1)
            if flat.size % info.size != 0:
                raise ShapeMismatch(
                    f"Field '{name}' has {flat.size} values, not a multiple of its size {info.size}")
            count = flat.size // info.size
            if num_records is None:
                num_records = count
            elif count != num_records:
                raise ShapeMismatch(
                    f"Field '{name}' carries {count} records while other fields carry {num_records}")
            arrays[name] = flat.reshape(count, info.size)

        if num_records == 0:
            return 0

        # only the newest records survive an oversized write
        if num_records > self.capacity:
            arrays = {name: values[-self.capacity:] for name, values in arrays.items()}
            num_records = self.capacity

        positions = (self._next_index + np.arange(num_records)) % self.capacity
        for name, storage in self.buffer.items():
            if name in arrays:
                storage[positions] = arrays[name]
            else:
                storage[positions] = 0

        self._next_index = (self._next_index + num_records) % self.capacity
        self._count = min(self._count + num_records, self.capacity)
        return num_records

    def clear_data(self):
        """Forget all records. Field storage is kept for reuse."""
        self._next_index = 0
        self._count = 0

    def get_data(self, name):
        """Return every stored record of a field, oldest first, as a flat array."""
        self._get_info(name)
        return self._gather(np.arange(self._count), [Fetch(name, 0, name)])[name]

    def _check_fetches(self, fetches):
        checked = []
        outputs = set()
        for fetch in fetches:
            fetch = Fetch(*fetch)
            self._get_info(fetch.source)
            if fetch.output in outputs:
                raise ValueError(f"Output name '{fetch.output}' requested twice")
            outputs.add(fetch.output)
            offset = _integral(fetch.offset, f"Offset of fetch '{fetch.output}'")
            checked.append(Fetch(fetch.source, offset, fetch.output))
        if not checked:
            raise ValueError("At least one fetch is required")
        return checked

    def _valid_range(self, fetches):
        """Logical index range [low, high) whose offset records all exist."""
        offsets = [fetch.offset for fetch in fetches]
        low = max(0, -min(offsets))
        high = self._count - max(0, max(offsets))
        return low, high

    def _gather(self, logical_indices, fetches):
        start = (self._next_index - self._count) % self.capacity
        samples = {}
        for fetch in fetches:
            physical = (start + logical_indices + fetch.offset) % self.capacity
            samples[fetch.output] = self.buffer[fetch.source][physical].reshape(-1)
        return samples

    def random_sample(self, batch_size, fetches):
        """
        Sample records uniformly at random, with replacement.

        Args:
            batch_size: Number of records to draw
            fetches: Sequence of (source, offset, output) triples

        Returns:
            Dictionary mapping each output name to a flat array, records
            concatenated in draw order
        """
        fetches = self._check_fetches(fetches)
        batch_size = int(batch_size)
        if batch_size < 0:
            raise ValueError(f"batch_size must not be negative, got {batch_size}")

        low, high = self._valid_range(fetches)
        if batch_size == 0:
            return self._gather(np.zeros(0, dtype=np.int64), fetches)
        if high <= low:
            raise InsufficientData(
                f"{self._count} records stored, none usable for offsets "
                f"{[fetch.offset for fetch in fetches]}")

        indices = self.rng.integers(low, high, size=batch_size)
        return self._gather(indices, fetches)

    def sample_batches_reordered(self, batch_size, fetches, drop_last=True):
        """
        Shuffle all usable records and split them into batches, without replacement.

        Args:
            batch_size: Records per batch
            fetches: Sequence of (source, offset, output) triples
            drop_last: Drop the trailing batch when it is shorter than batch_size

        Returns:
            List of dictionaries shaped like the result of random_sample
        """
        fetches = self._check_fetches(fetches)
        batch_size = int(batch_size)
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        low, high = self._valid_range(fetches)
        num_valid = max(0, high - low)
        if num_valid == 0 or (drop_last and num_valid < batch_size):
            raise InsufficientData(
                f"{num_valid} usable records, not enough for a batch of {batch_size}")

        order = low + self.rng.permutation(num_valid)
        batches = []
        for begin in range(0, num_valid, batch_size):
            chunk = order[begin:begin + batch_size]
            if drop_last and len(chunk) < batch_size:
                break
            batches.append(self._gather(chunk, fetches))
        return batches
