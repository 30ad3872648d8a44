"""
Local wide and deep training driver with in-process workers
"""
import json
import logging
import os
import time
from datetime import datetime

import numpy as np
import pandas as pd
import torch
from sklearn.metrics import log_loss, roc_auc_score
from tqdm import tqdm

from wdl.config import ModelConfig, TrainingConfig
from wdl.features import FeatureAssembler
from wdl.master import WDLMaster
from wdl.processor import NormalizeProcessor
from wdl.serialization import save_model
from wdl.worker import WDLWorker

logger = logging.getLogger(__name__)


def setup_logging(save_dir=None):
    """Logging to console, and to <save_dir>/logs/training.log when given"""
    handlers = [logging.StreamHandler()]
    if save_dir:
        os.makedirs(f"{save_dir}/logs", exist_ok=True)
        handlers.append(logging.FileHandler(f"{save_dir}/logs/training.log"))
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def make_save_dir(base_dir):
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    save_dir = f"{base_dir}/exp_{timestamp}"
    os.makedirs(f"{save_dir}/models", exist_ok=True)
    return save_dir


def evaluate_model(model, data):
    """AUC / LogLoss of ``model`` on normalized data"""
    model.eval()
    with torch.no_grad():
        preds = model(torch.from_numpy(data.dense), torch.from_numpy(data.embed),
                      torch.from_numpy(data.wide)).reshape(-1).numpy()
    labels = data.target
    results = {
        'num_samples': int(len(labels)),
        'mean_predicted_prob': float(np.mean(preds)) if len(preds) else 0.0,
        'mean_actual_prob': float(np.mean(labels)) if len(labels) else 0.0,
    }
    # AUC is undefined with a single class
    if len(np.unique(labels)) == 2:
        results['auc'] = float(roc_auc_score(labels, preds))
        results['logloss'] = float(log_loss(labels, np.clip(preds, 1e-7, 1 - 1e-7)))
    logger.info(f"Evaluation: {results}")
    return results


def train_local(model_config, train_config, train_df, valid_df=None, save_dir=None, weight_column=None):
    """
    Run synchronous wide and deep training with in-process workers.

    Returns:
        (master, history) where ``history`` holds per iteration errors
    """
    assembler = FeatureAssembler(model_config.columns, model_config.norm_type,
                                 model_config.dense_column_ids, model_config.embed_column_ids,
                                 model_config.wide_column_ids)
    processor = NormalizeProcessor(assembler, train_config.TARGET_COLUMN, train_config.POS_TAGS,
                                   train_config.NEG_TAGS, weight_column=weight_column)
    train_data = processor.run(train_df)
    valid_data = processor.run(valid_df) if valid_df is not None else None
    logger.info(f"Data normalized - Train: {len(train_data)}, "
                f"Val: {len(valid_data) if valid_data is not None else 0}")

    num_workers = max(1, min(train_config.NUM_WORKERS, len(train_data)))
    train_parts = train_data.split(num_workers)
    valid_parts = valid_data.split(num_workers) if valid_data is not None else [None] * num_workers
    workers = [WDLWorker(model_config, t, v) for t, v in zip(train_parts, valid_parts)]

    master = WDLMaster(model_config, train_config).init()
    params = master.do_compute([])

    history = {'train_error': [], 'validation_error': [], 'best_iteration': 0,
               'best_validation_error': float('inf')}
    checkpoint_path = None
    if save_dir:
        checkpoint_path = train_config.CHECKPOINT_PATH or f"{save_dir}/models/model.wdl"
    patience_counter = 0
    start = time.time()

    for epoch in tqdm(range(1, train_config.EPOCHS + 1), desc='Training'):
        # errors of this round belong to the weights the workers were given
        evaluated_weights = params.weights
        results = [worker.compute(params) for worker in workers]
        params = master.do_compute(results)

        history['train_error'].append(params.mean_train_error)
        history['validation_error'].append(params.mean_validation_error)
        monitored = params.mean_validation_error if params.validation_count > 0 else params.mean_train_error

        if monitored < history['best_validation_error']:
            history['best_validation_error'] = monitored
            history['best_iteration'] = epoch
            patience_counter = 0
            if checkpoint_path:
                best_model = model_config.build_model()
                best_model.load_weights(evaluated_weights)
                save_model(checkpoint_path, best_model, model_config.columns, model_config.norm_type)
        else:
            patience_counter += 1
            logger.info(f"  No improvement. Patience: {patience_counter}/{train_config.PATIENCE}")

        if patience_counter >= train_config.PATIENCE:
            logger.info(f"Early stopping triggered after {epoch} iterations!")
            break

    master.halt()
    logger.info(f"Training finished in {time.time() - start:.2f}s, best error "
                f"{history['best_validation_error']:.6f} at iteration {history['best_iteration']}")

    if valid_data is not None and len(valid_data):
        history['evaluation'] = evaluate_model(master.model, valid_data)
    if save_dir:
        save_training_artifacts(save_dir, model_config, train_config, history)
    return master, history


def save_training_artifacts(save_dir, model_config, train_config, history):
    with open(f"{save_dir}/config.json", 'w') as f:
        json.dump({'model': model_config.to_dict(), 'train': train_config.to_dict()}, f, indent=2)
    with open(f"{save_dir}/training_history.json", 'w') as f:
        json.dump(history, f, indent=2)
    logger.info(f"All training artifacts saved to: {save_dir}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description='Wide and Deep local training')
    parser.add_argument('--columns', required=True, help='JSON file with column stats')
    parser.add_argument('--train-data', required=True, help='Parquet file of raw training records')
    parser.add_argument('--valid-data', help='Parquet file of raw validation records')
    parser.add_argument('--epochs', type=int, default=TrainingConfig.EPOCHS)
    parser.add_argument('--workers', type=int, default=TrainingConfig.NUM_WORKERS)
    parser.add_argument('--learning-rate', type=float, default=TrainingConfig.LEARNING_RATE)
    parser.add_argument('--norm-type', default=ModelConfig.DEFAULT_NORM_TYPE.value)
    parser.add_argument('--continuous', action='store_true',
                        help='Resume from --checkpoint when it can be loaded')
    parser.add_argument('--checkpoint', help='Model file to resume from and save to')

    args = parser.parse_args()

    save_dir = make_save_dir(TrainingConfig.SAVE_DIR)
    setup_logging(save_dir)

    model_config = ModelConfig.from_column_file(args.columns, norm_type=args.norm_type)
    train_config = TrainingConfig(epochs=args.epochs, num_workers=args.workers,
                                  learning_rate=args.learning_rate,
                                  continuous_training=args.continuous, checkpoint_path=args.checkpoint)
    train_df = pd.read_parquet(args.train_data, engine="pyarrow")
    valid_df = pd.read_parquet(args.valid_data, engine="pyarrow") if args.valid_data else None

    train_local(model_config, train_config, train_df, valid_df, save_dir=save_dir)
    print(f"\nTraining completed! All artifacts saved to: {save_dir}")
