"""
Binary model format shared by the standalone predictor and the master's
continuous training recovery.

All fields are big-endian and written sequentially:

    int32 version | float32 reserved | float32 reserved | float64 reserved |
    utf reserved | utf normType | int32 columnCount | column stats records |
    wide and deep record

A utf string is an unsigned 16-bit byte length followed by UTF-8 bytes. The
whole stream may be gzip compressed, the loader detects it.
"""
import gzip
import io
import logging
import os
import struct
from dataclasses import dataclass
from typing import Dict

import numpy as np

from wdl.column import ColumnStats, ColumnType
from wdl.model import ACTIVATIONS, WideAndDeep
from wdl.normalizer import NormType

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
GZIP_MAGIC = b'\x1f\x8b'


class ModelFormatError(IOError):
    """Model bytes are malformed, truncated or of an unsupported version"""


class DataOutput:

    def __init__(self, stream):
        self.stream = stream

    def write_int(self, value):
        self.stream.write(struct.pack('>i', value))

    def write_bool(self, value):
        self.stream.write(struct.pack('>?', bool(value)))

    def write_float(self, value):
        self.stream.write(struct.pack('>f', value))

    def write_double(self, value):
        self.stream.write(struct.pack('>d', value))

    def write_utf(self, value):
        data = (value or '').encode('utf-8')
        if len(data) > 0xFFFF:
            raise ValueError(f"String too long to serialize: {len(data)} bytes")
        self.stream.write(struct.pack('>H', len(data)))
        self.stream.write(data)

    def write_floats(self, values):
        self.stream.write(np.asarray(values, dtype='>f4').tobytes())

    def write_doubles(self, values):
        self.write_int(len(values))
        self.stream.write(np.asarray(values, dtype='>f8').tobytes())

    def write_ints(self, values):
        self.write_int(len(values))
        self.stream.write(np.asarray(values, dtype='>i4').tobytes())


class DataInput:

    def __init__(self, stream):
        self.stream = stream

    def _read(self, size):
        data = self.stream.read(size)
        if len(data) != size:
            raise ModelFormatError(f"Unexpected end of model data, wanted {size} bytes, got {len(data)}")
        return data

    def read_int(self):
        return struct.unpack('>i', self._read(4))[0]

    def read_bool(self):
        return struct.unpack('>?', self._read(1))[0]

    def read_float(self):
        return struct.unpack('>f', self._read(4))[0]

    def read_double(self):
        return struct.unpack('>d', self._read(8))[0]

    def read_utf(self):
        length = struct.unpack('>H', self._read(2))[0]
        try:
            return self._read(length).decode('utf-8')
        except UnicodeDecodeError as e:
            raise ModelFormatError(f"Invalid utf string in model data: {e}") from e

    def read_length(self):
        length = self.read_int()
        if length < 0:
            raise ModelFormatError(f"Negative length {length} in model data")
        return length

    def read_floats(self, count):
        return np.frombuffer(self._read(count * 4), dtype='>f4').astype(np.float32)

    def read_doubles(self):
        count = self.read_length()
        return np.frombuffer(self._read(count * 8), dtype='>f8').astype(np.float64).tolist()

    def read_ints(self):
        count = self.read_length()
        return np.frombuffer(self._read(count * 4), dtype='>i4').astype(np.int64).tolist()


def write_column_stats(out, stats):
    out.write_int(stats.column_num)
    out.write_utf(stats.name)
    out.write_bool(stats.is_categorical or stats.is_hybrid)
    out.write_bool(stats.is_numerical or stats.is_hybrid)
    out.write_doubles(stats.bin_boundaries)
    out.write_int(len(stats.bin_categories))
    for category in stats.bin_categories:
        out.write_utf(category)
    out.write_doubles(stats.bin_count_woes)
    out.write_doubles(stats.bin_weighted_woes)
    for value in (stats.mean, stats.stddev, stats.woe_mean, stats.woe_stddev,
                  stats.woe_wgt_mean, stats.woe_wgt_stddev, stats.cutoff):
        out.write_double(value)


def read_column_stats(inp):
    column_num = inp.read_int()
    name = inp.read_utf()
    is_categorical = inp.read_bool()
    is_numerical = inp.read_bool()
    if is_categorical and is_numerical:
        column_type = ColumnType.HYBRID
    elif is_categorical:
        column_type = ColumnType.CATEGORICAL
    else:
        column_type = ColumnType.NUMERICAL
    boundaries = inp.read_doubles()
    categories = [inp.read_utf() for _ in range(inp.read_length())]
    woes = inp.read_doubles()
    weighted_woes = inp.read_doubles()
    mean, stddev, woe_mean, woe_stddev, woe_wgt_mean, woe_wgt_stddev, cutoff = \
        [inp.read_double() for _ in range(7)]
    try:
        return ColumnStats(
            column_num=column_num, name=name, column_type=column_type,
            mean=mean, stddev=stddev, cutoff=cutoff,
            bin_boundaries=boundaries, bin_categories=categories,
            bin_count_woes=woes, bin_weighted_woes=weighted_woes,
            woe_mean=woe_mean, woe_stddev=woe_stddev,
            woe_wgt_mean=woe_wgt_mean, woe_wgt_stddev=woe_wgt_stddev)
    except ValueError as e:
        raise ModelFormatError(f"Invalid column stats record: {e}") from e


def write_wide_and_deep(out, model):
    out.write_ints(model.dense_column_ids)
    out.write_ints(model.embed_column_ids)
    out.write_ints(model.wide_column_ids)

    out.write_int(len(model.embed_column_ids))
    for column_id in model.embed_column_ids:
        weight = model.embeddings[str(column_id)].weight.detach().cpu().numpy()
        out.write_int(column_id)
        out.write_int(weight.shape[0])
        out.write_int(weight.shape[1])
        out.write_floats(weight.reshape(-1))

    out.write_int(len(model.wide_column_ids))
    for column_id in model.wide_column_ids:
        weight = model.wide[str(column_id)].weight.detach().cpu().numpy()
        out.write_int(column_id)
        out.write_int(weight.shape[0])
        out.write_floats(weight.reshape(-1))
    out.write_float(float(model.wide_bias.detach().cpu().numpy()[0]))

    out.write_int(len(model.deep))
    for layer, act in zip(model.deep, model.act_funcs):
        out.write_int(layer.in_features)
        out.write_int(layer.out_features)
        out.write_floats(layer.weight.detach().cpu().numpy().reshape(-1))
        out.write_floats(layer.bias.detach().cpu().numpy())
        out.write_utf(act)
    out.write_float(model.l2_reg)


def read_wide_and_deep(inp):
    dense_ids = inp.read_ints()
    embed_ids = inp.read_ints()
    wide_ids = inp.read_ints()
    weights = {}

    embed_shapes = {}
    for _ in range(inp.read_length()):
        column_id = inp.read_int()
        rows, cols = inp.read_length(), inp.read_length()
        embed_shapes[column_id] = (rows, cols)
        weights[f'embeddings.{column_id}.weight'] = inp.read_floats(rows * cols).reshape(rows, cols)
    if sorted(embed_shapes) != sorted(embed_ids):
        raise ModelFormatError(f"Embedding tables {sorted(embed_shapes)} do not match embed columns {embed_ids}")

    wide_sizes = {}
    for _ in range(inp.read_length()):
        column_id = inp.read_int()
        rows = inp.read_length()
        wide_sizes[column_id] = rows
        weights[f'wide.{column_id}.weight'] = inp.read_floats(rows).reshape(rows, 1)
    if sorted(wide_sizes) != sorted(wide_ids):
        raise ModelFormatError(f"Wide tables {sorted(wide_sizes)} do not match wide columns {wide_ids}")
    weights['wide_bias'] = np.array([inp.read_float()], dtype=np.float32)

    num_layers = inp.read_length()
    if num_layers == 0:
        raise ModelFormatError("Wide and deep record has no deep layers")
    sizes, act_funcs = [], []
    for i in range(num_layers):
        in_features, out_features = inp.read_length(), inp.read_length()
        if sizes and sizes[-1] != in_features:
            raise ModelFormatError(f"Deep layer {i} expects {in_features} inputs, previous layer gives {sizes[-1]}")
        if not sizes:
            sizes.append(in_features)
        sizes.append(out_features)
        weights[f'deep.{i}.weight'] = inp.read_floats(out_features * in_features).reshape(out_features, in_features)
        weights[f'deep.{i}.bias'] = inp.read_floats(out_features)
        act_funcs.append(inp.read_utf().lower())
    l2_reg = inp.read_float()

    expected_input = len(dense_ids) + sum(shape[1] for shape in embed_shapes.values())
    if sizes[0] != expected_input:
        raise ModelFormatError(
            f"First deep layer has {sizes[0]} inputs, columns give {expected_input} "
            f"({len(dense_ids)} dense + embeddings)")
    if sizes[-1] != 1 or act_funcs[-1] != 'linear':
        raise ModelFormatError(f"Last deep layer must be linear with one output, got {sizes[-1]}/{act_funcs[-1]}")
    unknown = [a for a in act_funcs if a not in ACTIVATIONS]
    if unknown:
        raise ModelFormatError(f"Unknown activations in model data: {unknown}")

    # the tables carry one extra row for the missing category
    id_bin_cate_size = {cid: shape[0] - 1 for cid, shape in embed_shapes.items()}
    id_bin_cate_size.update({cid: rows - 1 for cid, rows in wide_sizes.items()})
    for column_id in wide_ids:
        if column_id in embed_shapes and embed_shapes[column_id][0] != wide_sizes[column_id]:
            raise ModelFormatError(f"Column {column_id} has different category sizes in wide and embedding tables")
    model = WideAndDeep(
        id_bin_cate_size=id_bin_cate_size,
        dense_column_ids=dense_ids,
        embed_column_ids=embed_ids,
        embed_outputs=[embed_shapes[cid][1] for cid in embed_ids],
        wide_column_ids=wide_ids,
        hidden_nodes=sizes[1:-1],
        act_funcs=act_funcs[:-1],
        l2_reg=l2_reg)
    model.load_weights(weights)
    model.eval()
    return model


@dataclass
class LoadedModel:
    """Result of loading model bytes, version is metadata of this load only"""

    model: WideAndDeep
    columns: Dict[int, ColumnStats]
    norm_type: NormType
    version: int


def write_model(stream, model, columns, norm_type, version=FORMAT_VERSION):
    out = DataOutput(stream)
    out.write_int(version)
    # reserved fields
    out.write_float(0.0)
    out.write_float(0.0)
    out.write_double(0.0)
    out.write_utf('')
    out.write_utf(NormType.parse(norm_type).value)

    columns = list(columns.values()) if isinstance(columns, dict) else list(columns)
    out.write_int(len(columns))
    for stats in columns:
        write_column_stats(out, stats)
    write_wide_and_deep(out, model)


def model_to_bytes(model, columns, norm_type, compress=True):
    buffer = io.BytesIO()
    write_model(buffer, model, columns, norm_type)
    data = buffer.getvalue()
    return gzip.compress(data) if compress else data


def save_model(path, model, columns, norm_type, compress=True):
    data = model_to_bytes(model, columns, norm_type, compress=compress)
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'wb') as f:
        f.write(data)
    os.replace(tmp_path, path)
    logger.info(f"Saved wide and deep model to {path} ({len(data)} bytes)")
    return path


def read_model(stream, strict_version=True):
    inp = DataInput(stream)
    version = inp.read_int()
    if version != FORMAT_VERSION:
        if strict_version:
            raise ModelFormatError(f"Unsupported model format version {version}, expected {FORMAT_VERSION}")
        logger.warning(f"Model format version {version} differs from {FORMAT_VERSION}, reading anyway")
    inp.read_float()
    inp.read_float()
    inp.read_double()
    inp.read_utf()

    norm_name = inp.read_utf()
    try:
        norm_type = NormType.parse(norm_name)
    except ValueError as e:
        raise ModelFormatError(f"Unknown norm type {norm_name!r} in model data") from e

    columns = {}
    for _ in range(inp.read_length()):
        stats = read_column_stats(inp)
        columns[stats.column_num] = stats
    model = read_wide_and_deep(inp)
    return LoadedModel(model=model, columns=columns, norm_type=norm_type, version=version)


def load_model(source, strict_version=True):
    """
    Load a model from a path, bytes or a binary stream, gzip or plain.

    Raises:
        ModelFormatError: bytes are malformed or of an unsupported version
        OSError: the file cannot be read
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    elif isinstance(source, (str, os.PathLike)):
        with open(source, 'rb') as f:
            data = f.read()
    else:
        data = source.read()

    if data[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise ModelFormatError(f"Corrupt gzip model data: {e}") from e

    try:
        return read_model(io.BytesIO(data), strict_version=strict_version)
    except ValueError as e:
        # graph rebuilt from the record rejects the weights
        raise ModelFormatError(str(e)) from e
