from argparse import ArgumentParser, Namespace
import json
import logging
import sys
from typing import Optional
import numpy as np
import h5py
from matplotlib import pyplot as plt

from amazing_emd.emd import EMD
from amazing_emd.handlers import HDF5Handler, Histogram1DHandler
from amazing_emd.pairwise import PairwiseEMD
from amazing_emd.preprocess import CenterWeightedCentroid, FlipHardestParticle, RotatePrincipalAxis
from amazing_emd.utils import load_events


def parse_args(argv: Optional[list[str]] = None) -> Namespace:
    parser = ArgumentParser(description="Pairwise EMDs between the events of HDF5 files")
    parser.add_argument("--file-a", type=str, required=True, help="File with the first collection of events")
    parser.add_argument("--file-b", type=str, default=None, help="File with the second collection (all pairs within file-a if not given)")
    parser.add_argument("--key", type=str, default="jet1_PFCands", help="Dataset holding the zero padded events")
    parser.add_argument("-n", "--n-events", type=int, default=None, help="Number of random events per file (all if not specified)")
    parser.add_argument("--seed", type=int, default=None, help="Seed for choosing the events")
    parser.add_argument("-R", type=float, default=0.4, help="Ground distance scale")
    parser.add_argument("--beta", type=float, default=1.0, help="Ground distance exponent")
    parser.add_argument("--norm", default=False, action="store_true", help="Normalize the event weights")
    parser.add_argument("--distance", type=str, default="yphi", choices=("yphi", "euclidean"))
    parser.add_argument("--center", default=False, action="store_true", help="Center the events on their weighted centroid")
    parser.add_argument("--rotate", default=False, action="store_true", help="Rotate the events along their principal axis")
    parser.add_argument("--flip", default=False, action="store_true", help="Flip the hardest particle into the first quadrant")
    parser.add_argument("--threads", type=int, default=-1, help="Number of worker threads (-1 for all cores)")
    parser.add_argument("--n-iter-max", type=int, default=100000)
    parser.add_argument("--print-every", type=int, default=0, help="Log progress every so many EMDs")
    parser.add_argument("-o", "--out", type=str, required=True, help="Output file (hdf5 format)")
    parser.add_argument("--plot", type=str, default=None, help="Save a histogram of the EMDs to this file")
    parser.add_argument("--nbins", type=int, default=50)
    parser.add_argument("--hist-range", type=float, nargs=2, default=(0.0, 1.0), metavar=("MIN", "MAX"))
    parser.add_argument("-v", "--verbose", default=False, action="store_true")
    return parser.parse_args(argv)


def choose_indices(file: h5py.File, key: str, n_events: Optional[int], rng: np.random.Generator) -> np.ndarray:
    n_total = len(file[key])
    if n_events is None or n_events >= n_total:
        return np.arange(n_total)
    return np.sort(rng.choice(n_total, size=n_events, replace=False))


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    rng = np.random.default_rng(args.seed)

    with h5py.File(args.file_a, "r") as file_a:
        indices_a = choose_indices(file_a, args.key, args.n_events, rng)
        events_a = load_events(file_a, args.key, indices_a)
    if args.file_b is not None:
        with h5py.File(args.file_b, "r") as file_b:
            indices_b = choose_indices(file_b, args.key, args.n_events, rng)
            events_b = load_events(file_b, args.key, indices_b)
    else:
        indices_b, events_b = indices_a, None

    emd = EMD(args.distance, R=args.R, beta=args.beta, norm=args.norm, n_iter_max=args.n_iter_max)
    if args.center:
        emd.preprocess(CenterWeightedCentroid())
    if args.rotate:
        emd.preprocess(RotatePrincipalAxis())
    if args.flip:
        emd.preprocess(FlipHardestParticle())
    pairwise_emd = PairwiseEMD(emd, num_threads=args.threads, print_every=args.print_every)

    symmetric = events_b is None
    n_a, n_b = len(events_a), len(events_a) if symmetric else len(events_b)

    with h5py.File(args.out, "w") as file_out:
        file_out.create_dataset("indices_a", data=indices_a)
        file_out.create_dataset("indices_b", data=indices_b)
        initial = np.full((n_a, n_b), np.nan)
        if symmetric:
            np.fill_diagonal(initial, 0.0)
        emd_dataset = file_out.create_dataset("emd", data=initial)
        file_out.attrs.update(
            {
                "file_a": args.file_a,
                "file_b": args.file_b or args.file_a,
                "key": args.key,
                "R": args.R,
                "beta": args.beta,
                "norm": args.norm,
                "distance": args.distance,
                "center": args.center,
                "rotate": args.rotate,
                "flip": args.flip,
                "description": emd.description(),
            }
        )

        handlers = [HDF5Handler(emd_dataset, symmetric=symmetric)]
        histogram = None
        if args.plot:
            histogram = Histogram1DHandler(args.nbins, *args.hist_range)
            handlers.append(histogram)

        print(pairwise_emd.description(), flush=True)
        pairwise_emd.compute(events_a, events_b, handlers=handlers)
        for handler in handlers:
            handler.finalize()

        errors = pairwise_emd.errors()
        for (i, j), status in sorted(errors.items()):
            print(f"EMD failed at {i}->{j}: {status.name}", file=sys.stderr)
        file_out.attrs["errors"] = json.dumps({f"{i},{j}": status.name for (i, j), status in errors.items()})
        print(f"{pairwise_emd.num_emds()} EMDs done in {pairwise_emd.duration():.2f}s, {len(errors)} failed", flush=True)

    if histogram is not None:
        hist, errs, edges = histogram.finalize()
        plt.figure()
        plt.stairs(hist, edges)
        plt.xlabel("EMD")
        plt.ylabel("pairs")
        plt.savefig(args.plot)
        plt.close()

    return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
