#!/usr/bin/env python3
"""
Label Fusion Pipeline

Unified entry point for fusing segmentations, evaluating a consensus against a
reference, and generating synthetic raters.

Usage:
    # Fuse segmentations with multi-label STAPLE
    python main.py --mode fuse --inputs rater_0.nii.gz rater_1.nii.gz rater_2.nii.gz --output outputs/run

    # Majority voting instead of STAPLE
    python main.py --mode vote --inputs rater_*.nii.gz --output outputs/vote

    # Evaluate a consensus against a reference segmentation
    python main.py --mode evaluate --input outputs/run/consensus.nii.gz --reference ground_truth.nii.gz

    # Generate synthetic raters with a known ground truth
    python main.py --mode simulate --output data/synthetic
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

import numpy as np
from tqdm import tqdm

from labelfusion.utils.io import load_config
from labelfusion.utils.logger import LoggerAdapter, setup_logger
from labelfusion.utils.seed import set_seed


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Multi-label segmentation fusion (STAPLE / majority voting)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # STAPLE with a mask and probability images
    python main.py --mode fuse --inputs a.nii.gz b.nii.gz c.nii.gz --mask brain.nii.gz --probabilities

    # Cap iterations and warm-start from majority voting
    python main.py --mode fuse --inputs a.nii.gz b.nii.gz c.nii.gz --max-iterations 50 --majority-init

    # Fuse and evaluate against a reference in one go
    python main.py --mode fuse --inputs a.nii.gz b.nii.gz c.nii.gz --reference truth.nii.gz
        """
    )

    # Mode selection
    parser.add_argument(
        "--mode",
        type=str,
        required=True,
        choices=["fuse", "vote", "evaluate", "simulate"],
        help="Pipeline mode to run"
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=str,
        default="configs/default.yaml",
        help="Path to configuration file (default: configs/default.yaml)"
    )
    parser.add_argument(
        "--exp-name",
        type=str,
        default=None,
        help="Experiment name (overrides config)"
    )

    # Data paths
    parser.add_argument(
        "--inputs",
        type=str,
        nargs="+",
        default=None,
        help="Input segmentations or directories of them (fuse/vote)"
    )
    parser.add_argument(
        "--input",
        type=str,
        default=None,
        help="Segmentation to evaluate (evaluate mode)"
    )
    parser.add_argument(
        "--mask",
        type=str,
        default=None,
        help="Mask image; pixels outside copy the first input"
    )
    parser.add_argument(
        "--prior-images",
        type=str,
        nargs="+",
        default=None,
        help="One prior probability image per class"
    )
    parser.add_argument(
        "--reference",
        type=str,
        default=None,
        help="Reference segmentation for evaluation"
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory"
    )

    # Fusion overrides
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Maximum number of EM iterations (overrides config)"
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Termination update threshold (overrides config)"
    )
    parser.add_argument(
        "--number-of-classes",
        type=int,
        default=None,
        help="Number of classes (overrides config)"
    )
    parser.add_argument(
        "--undecided-label",
        type=int,
        default=None,
        help="Label for undecided pixels (overrides config)"
    )
    parser.add_argument(
        "--priors",
        type=float,
        nargs="+",
        default=None,
        help="Prior probability per class"
    )
    parser.add_argument(
        "--trust",
        type=float,
        nargs="+",
        default=None,
        help="Observer trust per input"
    )
    parser.add_argument(
        "--preference",
        type=int,
        nargs="+",
        default=None,
        help="Tie-break preference per class (lower wins)"
    )
    parser.add_argument(
        "--majority-init",
        action="store_true",
        help="Initialize confusion matrices from majority voting"
    )
    parser.add_argument(
        "--probabilities",
        action="store_true",
        help="Write one posterior probability image per class"
    )
    parser.add_argument(
        "--num-workers",
        type=int,
        default=None,
        help="Number of worker threads (overrides config)"
    )

    # Miscellaneous
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed (overrides config)"
    )
    parser.add_argument(
        "--no-plots",
        action="store_true",
        help="Disable figures"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )

    return parser.parse_args(argv)


def merge_config_with_args(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Merge command line arguments into configuration."""
    for section in ("experiment", "fusion", "io", "synthetic", "report", "visualization"):
        config.setdefault(section, {})
        if config[section] is None:
            config[section] = {}

    # Experiment settings
    if args.exp_name is not None:
        config["experiment"]["name"] = args.exp_name
    if args.seed is not None:
        config["experiment"]["seed"] = args.seed

    # Fusion settings
    fusion = config["fusion"]
    if args.mode == "vote":
        fusion["method"] = "vote"
    if args.max_iterations is not None:
        fusion["max_iterations"] = args.max_iterations
    if args.threshold is not None:
        fusion["termination_threshold"] = args.threshold
    if args.number_of_classes is not None:
        fusion["number_of_classes"] = args.number_of_classes
    if args.undecided_label is not None:
        fusion["undecided_label"] = args.undecided_label
    if args.priors is not None:
        fusion["prior_probabilities"] = args.priors
    if args.trust is not None:
        fusion["observer_trust"] = args.trust
    if args.preference is not None:
        fusion["prior_preference"] = args.preference
    if args.majority_init:
        fusion["initialize_with_majority_voting"] = True
    if args.probabilities:
        fusion["generate_probabilistic_segmentations"] = True
    if args.num_workers is not None:
        fusion["num_workers"] = args.num_workers

    if args.no_plots:
        config["visualization"]["enabled"] = False

    # Store args for reference
    config["_args"] = {
        "mode": args.mode,
        "inputs": args.inputs,
        "input": args.input,
        "mask": args.mask,
        "prior_images": args.prior_images,
        "reference": args.reference,
        "output": args.output,
        "verbose": args.verbose,
        "debug": args.debug,
    }

    return config


def _output_dir(config: Dict[str, Any]) -> Path:
    output = config["_args"].get("output")
    if output is None:
        experiment = config["experiment"]
        output = Path(experiment.get("output_dir", "outputs")) / experiment.get("name", "fusion")
    output = Path(output)
    output.mkdir(parents=True, exist_ok=True)
    return output


def run_fuse(config: Dict[str, Any], logger) -> Dict[str, Any]:
    """Run fusion pipeline (STAPLE or majority voting)."""
    from labelfusion.analysis import ReportGenerator
    from labelfusion.evaluation import evaluate_segmentation
    from labelfusion.fusion import STAPLEResult, build_fusion
    from labelfusion.utils.io import (
        get_file_list,
        load_label_image,
        load_mask_image,
        load_probability_images,
        save_config,
        save_json,
        save_label_image,
        save_probability_images,
    )
    from labelfusion.utils.visualization import Visualizer

    inputs = config["_args"].get("inputs")
    if not inputs:
        raise ValueError("--inputs is required for fuse/vote mode")

    # A directory stands for every NIfTI file in it
    expanded = []
    for path in inputs:
        if Path(path).is_dir():
            expanded.extend(str(f) for f in get_file_list(path))
        else:
            expanded.append(path)
    inputs = expanded

    output_path = _output_dir(config)
    method = config["fusion"].get("method", "staple")

    logger.info(f"Starting fusion pipeline ({method})")
    logger.info(f"Inputs: {len(inputs)} segmentations")
    logger.info(f"Output: {output_path}")

    segmentations = []
    header, affine = None, None
    for path in inputs:
        data, nii_header, nii_affine = load_label_image(path, return_header=True)
        if header is None:
            header, affine = nii_header, nii_affine
        segmentations.append(data)

    mask = None
    if config["_args"].get("mask"):
        mask = load_mask_image(config["_args"]["mask"])

    prior_images = None
    if config["_args"].get("prior_images"):
        prior_images = load_probability_images(config["_args"]["prior_images"])

    fuser = build_fusion(config, logger=logger)
    save_config(config, output_path / "config.yaml")

    max_iterations = config["fusion"].get("max_iterations")
    with tqdm(total=max_iterations, desc="EM iterations", disable=method == "vote") as pbar:

        def on_iteration(event):
            pbar.update(1)
            pbar.set_postfix(max_update=f"{event.max_update:.2e}")

        result = fuser.run(
            segmentations,
            mask=mask,
            prior_images=prior_images,
            callback=on_iteration,
        )

    output_name = config["io"].get("output_name", "consensus.nii.gz")
    save_label_image(result.labels, output_path / output_name, affine=affine, header=header)
    logger.info(f"Saved consensus to {output_path / output_name}")

    results = {
        "sources": [Path(p).name for p in inputs],
        "fusion": {
            "method": method,
            "number_of_classes": result.number_of_classes,
            "undecided_label": result.undecided_label,
        },
    }

    if isinstance(result, STAPLEResult):
        results["fusion"].update({
            "elapsed_iterations": result.elapsed_iterations,
            "max_update": result.max_update,
            "converged": result.converged,
            "termination_reason": result.termination_reason,
            "prior_origin": result.prior_origin,
        })
        results["confusion_matrices"] = [m.tolist() for m in result.confusion_matrices]
        results["prior_probabilities"] = result.prior_probabilities.tolist()
        results["update_history"] = result.update_history

        LoggerAdapter(logger).log_confusion_matrices(result.confusion_matrices, results["sources"])

        if result.probabilities is not None:
            paths = save_probability_images(
                result.probabilities,
                output_path,
                affine=affine,
                header=header,
                prefix=config["io"].get("probability_prefix", "probability_"),
            )
            logger.info(f"Saved {len(paths)} probability images")
            result.release_probabilities()

        if config["visualization"].get("enabled", True):
            visualizer = Visualizer(config["visualization"])
            visualizer.plot_convergence(
                result.update_history,
                threshold=config["fusion"].get("termination_threshold"),
                save_path=output_path / "convergence.png",
            )
            visualizer.plot_confusion_matrices(
                result.confusion_matrices,
                names=results["sources"],
                save_path=output_path / "confusion_matrices.png",
            )

    if config["_args"].get("reference"):
        reference = load_label_image(config["_args"]["reference"])
        results["evaluation"] = evaluate_segmentation(
            result.labels,
            reference,
            num_classes=result.number_of_classes,
            spacing=tuple(float(z) for z in header.get_zooms()[: reference.ndim]),
        )
        logger.info(f"Dice vs reference: {results['evaluation']['dice']:.4f}")

    if "confusion_matrices" in results and config["report"].get("enabled", True):
        report_gen = ReportGenerator(config)
        report_gen.generate(results, output_path, formats=config["report"].get("formats", ["json"]))
    else:
        save_json(results, output_path / "fusion_report.json")

    logger.info("Fusion completed")
    return results


def run_evaluate(config: Dict[str, Any], logger) -> Dict[str, Any]:
    """Run evaluation of a segmentation against a reference."""
    from labelfusion.evaluation import evaluate_segmentation
    from labelfusion.utils.io import load_label_image, save_json

    input_path = config["_args"].get("input")
    reference_path = config["_args"].get("reference")

    if input_path is None:
        raise ValueError("--input is required for evaluate mode")
    if reference_path is None:
        raise ValueError("--reference is required for evaluate mode")

    logger.info("Starting evaluation pipeline")
    logger.info(f"Input: {input_path}")
    logger.info(f"Reference: {reference_path}")

    pred, header, _ = load_label_image(input_path, return_header=True)
    target = load_label_image(reference_path)

    num_classes = config["fusion"].get("number_of_classes") or int(target.max()) + 1
    metrics = evaluate_segmentation(
        pred,
        target,
        num_classes=num_classes,
        spacing=tuple(float(z) for z in header.get_zooms()[: target.ndim]),
    )

    LoggerAdapter(logger).log_metrics(metrics)

    output_path = _output_dir(config)
    save_json(metrics, output_path / "evaluation.json")

    logger.info("Evaluation completed")
    return metrics


def run_simulate(config: Dict[str, Any], logger) -> Dict[str, Any]:
    """Generate synthetic raters with a known ground truth."""
    from labelfusion.data import generate_raters
    from labelfusion.utils.io import save_json, save_label_image
    from labelfusion.utils.visualization import Visualizer

    synthetic = config["synthetic"]
    output_path = _output_dir(config)

    logger.info("Starting simulation")
    logger.info(f"Output: {output_path}")

    raters = generate_raters(
        shape=synthetic.get("shape", [64, 64]),
        number_of_classes=synthetic.get("number_of_classes", 3),
        accuracies=synthetic.get("accuracies", [0.95, 0.8, 0.6]),
        blobs_per_class=synthetic.get("blobs_per_class", 3),
        boundary_shifts=synthetic.get("boundary_shifts"),
        seed=config["experiment"].get("seed"),
    )

    save_label_image(raters.ground_truth, output_path / "ground_truth.nii.gz")
    rater_paths = []
    for i, segmentation in enumerate(raters.segmentations):
        path = output_path / f"rater_{i}.nii.gz"
        save_label_image(segmentation, path)
        rater_paths.append(str(path))

    summary = {
        "ground_truth": str(output_path / "ground_truth.nii.gz"),
        "raters": rater_paths,
        "accuracies": raters.accuracies,
        "number_of_classes": raters.number_of_classes,
        "seed": raters.seed,
        **raters.metadata,
    }
    save_json(summary, output_path / "synthetic.json")

    if config["visualization"].get("enabled", True):
        images = {"ground truth": raters.ground_truth}
        images.update({f"rater {i}": s for i, s in enumerate(raters.segmentations)})
        Visualizer(config["visualization"]).plot_label_slices(
            images, save_path=output_path / "raters.png"
        )

    observed = [float(np.mean(s == raters.ground_truth)) for s in raters.segmentations]
    logger.info(f"Generated {len(rater_paths)} raters, observed accuracies {np.round(observed, 3).tolist()}")

    logger.info("Simulation completed")
    return summary


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    config = load_config(args.config)

    # Merge with command line arguments
    config = merge_config_with_args(config, args)

    # Setup logging
    log_dir = Path(config["experiment"].get("log_dir", "logs")) / config["experiment"].get("name", "fusion")
    log_dir.mkdir(parents=True, exist_ok=True)
    logger = setup_logger(
        name="labelfusion",
        log_file=log_dir / f"{args.mode}.log",
        level="DEBUG" if args.debug else "INFO",
    )

    # Set random seed
    set_seed(config["experiment"].get("seed", 42))

    # Log configuration
    logger.info(f"Mode: {args.mode}")
    logger.info(f"Config: {args.config}")
    if args.verbose:
        LoggerAdapter(logger).log_config({k: v for k, v in config.items() if not k.startswith("_")})

    # Run appropriate pipeline
    try:
        if args.mode in ("fuse", "vote"):
            run_fuse(config, logger)
        elif args.mode == "evaluate":
            run_evaluate(config, logger)
        elif args.mode == "simulate":
            run_simulate(config, logger)
        else:
            raise ValueError(f"Unknown mode: {args.mode}")

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
