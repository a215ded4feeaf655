import os
import yaml
import h5py
import numpy as np



def safe_makedir(dirname):
    """This function takes a directory name as an argument"""
    if not os.path.exists(dirname):
        os.makedirs(dirname)


def write_posteriors(filepath, post):
    """
    This function writes the Gaussian posteriors of an utterance in the
    format read by the recipe: three aligned datasets "frame", "gauss" and
    "weight".
    Args:
        filepath (string): path of the HDF5 file to write
        post (list): for each frame, a list of (gaussian, weight) pairs
    """
    frames = [t for t, frame_post in enumerate(post) for _ in frame_post]
    gauss = [g for frame_post in post for g, _ in frame_post]
    weights = [w for frame_post in post for _, w in frame_post]
    parent, _ = os.path.split(filepath)
    if parent:
        safe_makedir(parent)
    with h5py.File(filepath, mode="w") as h5:
        h5.create_dataset("frame", data=np.array(frames, dtype=np.int64))
        h5.create_dataset("gauss", data=np.array(gauss, dtype=np.int64))
        h5.create_dataset("weight", data=np.array(weights, dtype=np.float64))


def parse_yaml(filepath="conf.yaml"):
    """
    This method parses the YAML configuration file and returns the parsed info
    as python dictionary.
    Args:
        filepath (string): relative path of the YAML configuration file
    """
    with open(filepath, 'r') as fin:
        return yaml.safe_load(fin)
