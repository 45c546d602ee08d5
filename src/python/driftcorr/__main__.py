import argparse
import logging
import sys

import yaml

from .run_all import LOG_DATEFMT, LOG_FORMAT, load_config, run_pipeline

logger = logging.getLogger(__name__)

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="driftcorr",
        description="Cumulative circular correlation between animal and drift-particle bearings.",
    )
    parser.add_argument("--config", default="configs/project.yaml", help="YAML run configuration")
    parser.add_argument("--animal-data", help="Override stage_read.animal_data_path")
    parser.add_argument("--particle-data", help="Override stage_read.particle_data_path")
    parser.add_argument("--covariate-data", help="Override stage_read.covariate_data_path")
    parser.add_argument("--output-dir", help="Override stage_output.output_dir")
    parser.add_argument("--interval", help="Override stage_align.resample_interval, e.g. 1D or 12h")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    try:
        config = load_config(args.config)
    except (OSError, yaml.YAMLError, KeyError, TypeError) as exc:
        logger.error("Could not load config %s: %s", args.config, exc)
        return 1
    if args.animal_data:
        config["stage_read"]["animal_data_path"] = args.animal_data
    if args.particle_data:
        config["stage_read"]["particle_data_path"] = args.particle_data
    if args.covariate_data:
        config["stage_read"]["covariate_data_path"] = args.covariate_data
    if args.output_dir:
        config["stage_output"]["output_dir"] = args.output_dir
    if args.interval:
        config["stage_align"]["resample_interval"] = args.interval

    return run_pipeline(config)

if __name__ == "__main__":
    sys.exit(main())
