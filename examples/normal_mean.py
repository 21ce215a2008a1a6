"""Executable script estimating mean and standard deviation of normal data.

This script simulates normally distributed data and estimates its mean and standard deviation with
`run_mcmc`, using a reflective kernel that keeps both parameters in the interval [0, 10]. A summary
of the posterior samples of all chains is printed with ArviZ.
For info on how to run the script, type `python normal_mean.py --help` in the command line.

Functions:
    normal_loglik: Log-likelihood of the mean and standard deviation of normal data
    scattered_initial_states: Initial states spread over the kernel bounds
    process_cli_arguments: Read in command-line arguments for the run
    main: Main routine to be invoked when script is executed
"""

import argparse
from pathlib import Path

import arviz as az
import numpy as np

import mhmcmc


# ==================================================================================================
@mhmcmc.requires("data")
def normal_loglik(x: np.ndarray, data: np.ndarray) -> float:
    """Log-likelihood of mean `x[0]` and standard deviation `x[1]`, up to a constant."""
    mean, std = x
    if std <= 0:
        return -np.inf
    return float(np.sum(-np.log(std) - 0.5 * np.square((data - mean) / std)))


# --------------------------------------------------------------------------------------------------
def scattered_initial_states(num_chains: int) -> list[dict[str, float]]:
    """Initial states spread evenly over the interior of the kernel bounds [0, 10]."""
    starts = np.linspace(1.0, 9.0, num_chains)
    return [{"mu": float(start), "sigma": float(start)} for start in starts]


# --------------------------------------------------------------------------------------------------
def process_cli_arguments() -> argparse.Namespace:
    """Read in command-line arguments for the run.

    Returns:
        argparse.Namespace: Parsed arguments
    """
    arg_parser = argparse.ArgumentParser(
        prog="normal_mean.py",
        usage="python %(prog)s [options]",
        description="Estimate mean and standard deviation of simulated normal data",
    )
    arg_parser.add_argument("--num-data", type=int, default=1000, help="Number of data points")
    arg_parser.add_argument("--mean", type=float, default=2.6, help="True mean of the data")
    arg_parser.add_argument("--std", type=float, default=3.0, help="True std of the data")
    arg_parser.add_argument("--nsteps", type=int, default=2000, help="Maximum chain length")
    arg_parser.add_argument("--nchains", type=int, default=2, help="Number of chains")
    arg_parser.add_argument("--thin", type=int, default=1, help="Thinning factor")
    arg_parser.add_argument(
        "--autostop", type=int, default=500, help="Steps between convergence checks, 0 disables"
    )
    arg_parser.add_argument(
        "--multicore", action="store_true", help="Run chains in a multiprocessing pool"
    )
    arg_parser.add_argument("--seed", type=int, default=1231, help="Seed for data and sampler")
    arg_parser.add_argument(
        "--logfile", type=Path, default=None, help="File to write the run log to"
    )
    return arg_parser.parse_args()


# ==================================================================================================
def main() -> None:
    """Main routine.

    Simulates the data, runs the sampler from scattered initial states, and prints a posterior
    summary.
    """
    cli_args = process_cli_arguments()
    rng = np.random.default_rng(cli_args.seed)
    data = rng.normal(cli_args.mean, cli_args.std, size=cli_args.num_data)
    initial = scattered_initial_states(cli_args.nchains)

    print("\n====== Start Sampling ======\n")
    results = mhmcmc.run_mcmc(
        normal_loglik,
        initial,
        nsteps=cli_args.nsteps,
        nchains=cli_args.nchains,
        thin=cli_args.thin,
        kernel=mhmcmc.ReflectiveKernel(scale=0.1, lb=0, ub=10),
        multicore=cli_args.multicore,
        autostop_interval=cli_args.autostop,
        seed=cli_args.seed,
        logger_settings=mhmcmc.LoggerSettings(do_printing=True, logfile_path=cli_args.logfile),
        data=data,
    )
    if isinstance(results, mhmcmc.SampleSet):
        results = [results]
    print("\n============================\n")

    num_draws = min(len(sample_set) for sample_set in results)
    datadict = {
        name: np.stack([sample_set.as_dict()[name][:num_draws] for sample_set in results])
        for name in results[0].names
    }
    dataset = az.convert_to_dataset(datadict)
    print(az.summary(dataset))
    print(f"\nTrue values: mu = {cli_args.mean}, sigma = {cli_args.std}")


if __name__ == "__main__":
    main()
