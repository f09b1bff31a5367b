"""Throughput benchmark for the prefetch pipeline.

Usage:
    python -m seg_pipeline.benchmark pipeline.source=data/train.db
    python -m seg_pipeline.benchmark pipeline.source=data/train.db num_batches=200
    python -m seg_pipeline.benchmark pipeline.source=data/train.db \
        pipeline.transform.crop.mode=fixed_square +pipeline.transform.crop.size=321
"""

from __future__ import annotations

import sys
import time

import hydra
from loguru import logger
from omegaconf import DictConfig, OmegaConf

from seg_pipeline.config import PipelineConfig
from seg_pipeline.data.pipeline import PrefetchPipeline


def pipeline_config_from_hydra(cfg: DictConfig) -> PipelineConfig:
    """Validate the ``pipeline`` node of a composed Hydra config."""
    node = OmegaConf.to_container(cfg.pipeline, resolve=True)
    return PipelineConfig.model_validate(node)


def run_benchmark(
    config: PipelineConfig, num_batches: int, consume_ms: float = 0.0
) -> dict[str, float]:
    """Pull ``num_batches`` batches and report throughput.

    Args:
        config: Pipeline configuration.
        num_batches: Number of batches to pull.
        consume_ms: Simulated consumer work per batch, to measure overlap.
    """
    if num_batches <= 0:
        raise ValueError(f"num_batches must be positive, got {num_batches}")
    with PrefetchPipeline(config) as pipeline:
        start = time.perf_counter()
        for _ in range(num_batches):
            pipeline.get_batch()
            if consume_ms > 0:
                time.sleep(consume_ms / 1000)
        elapsed = time.perf_counter() - start

    stats = {
        "batches": float(num_batches),
        "seconds": elapsed,
        "batches_per_second": num_batches / elapsed,
        "items_per_second": num_batches * config.batch_size / elapsed,
    }
    logger.info(
        f"{num_batches} batches in {elapsed:.2f}s: "
        f"{stats['batches_per_second']:.1f} batches/s, "
        f"{stats['items_per_second']:.1f} items/s"
    )
    return stats


@hydra.main(version_base=None, config_path="conf", config_name="benchmark")
def main(cfg: DictConfig) -> None:
    """Run the benchmark with the given Hydra config."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.get("log_level", "INFO"))

    logger.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")
    config = pipeline_config_from_hydra(cfg)
    run_benchmark(config, cfg.num_batches, cfg.get("consume_ms", 0.0))


if __name__ == "__main__":
    main()
