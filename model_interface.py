import os
import h5py
import numpy as np
import logging
logging.basicConfig(level=logging.INFO)
from multiprocessing import cpu_count
from utils import parse_yaml



class IvectorModel():
    """This class is just an interface for my models to inherit"""

    def __init__(self, conf_filepath):
        self.conf = parse_yaml(conf_filepath)
        # number of threads used to accumulate and update, 1 disables threading
        self.NUM_THREADS = self.conf.get('num_threads', cpu_count())
        # The parent directory of the project
        self.BASE_DIR = self.conf['outpath']


    def getUtterances(self, list_name=None):
        """
        This method returns the list of utterances to process. If a list file
        is given in the configuration, it is read (one utterance per line);
        otherwise all feature files of the 'feat' directory are used.
        Args:
            list_name (string): key of the list file in the configuration
        Returns:
            utterances: sorted list of utterance ids
        """
        if list_name and self.conf.get(list_name):
            with open(self.conf[list_name], 'r') as fin:
                return [line.strip() for line in fin if line.strip()]
        feat_dir = os.path.join(self.BASE_DIR, "feat")
        return sorted(f.split(".h5")[0] for f in os.listdir(feat_dir) if f.endswith(".h5"))


    def readFeatures(self, utt):
        """
        This method loads the features of an utterance from the HDF5 file
        'feat/<utt>.h5' (dataset "cep").
        Args:
            utt (string): the utterance id
        Returns:
            feats: numpy array of features, one frame per row
        """
        with h5py.File(os.path.join(self.BASE_DIR, "feat", utt+".h5"), mode="r") as h5:
            return np.array(h5["cep"], dtype=np.float64)


    def readPosteriors(self, utt, num_frames):
        """
        This method loads the Gaussian posteriors of an utterance from the
        HDF5 file 'post/<utt>.h5' where they are stored as three aligned
        datasets: "frame", "gauss" and "weight".
        Args:
            utt (string): the utterance id
            num_frames (int): number of frames of the utterance
        Returns:
            post: a list holding a list of (gaussian, weight) pairs per frame,
                or None if there is no posterior file for this utterance
        """
        filepath = os.path.join(self.BASE_DIR, "post", utt+".h5")
        if not os.path.exists(filepath):
            return None
        with h5py.File(filepath, mode="r") as h5:
            frames = np.array(h5["frame"])
            gauss = np.array(h5["gauss"])
            weights = np.array(h5["weight"])
        post = [[] for _ in range(num_frames)]
        for t, g, w in zip(frames, gauss, weights):
            post[int(t)].append((int(g), float(w)))
        return post

    def train(self):
        pass

    def extract(self):
        pass
