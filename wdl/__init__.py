"""
Wide and Deep model training and standalone inference.
"""
from wdl.column import ColumnStats, ColumnType, build_category_index
from wdl.config import ModelConfig, TrainingConfig
from wdl.features import FeatureAssembler
from wdl.master import MasterPhase, MasterState, WDLMaster, master_round
from wdl.model import ShapeMismatchError, SparseInput, WideAndDeep
from wdl.normalizer import NormType, normalize
from wdl.params import SerializationType, WDLParams
from wdl.predict import WDLPredictor
from wdl.serialization import FORMAT_VERSION, LoadedModel, ModelFormatError, load_model, save_model
from wdl.weight import RangeRandom, WeightRandom

__version__ = "0.1.0"
