import os
import ivectorkit
import h5py
import numpy as np
from tqdm import tqdm
import logging
logging.basicConfig(level=logging.INFO)

from ivectorkit.ivector_wrappers import process_parallel_lists
from model_interface import IvectorModel
from utils import safe_makedir


@process_parallel_lists
def accumulate_utterances(model, stats, extractor, ubm, acoustic_weight, utterance_list, num_thread=1):
    """
    Accumulate the statistics of a list of utterances. Runs in several threads
    sharing the same accumulator, which protects itself.
    """
    for utt in tqdm(utterance_list, desc="Accumulating"):
        feats = model.readFeatures(utt)
        post = model.readPosteriors(utt, feats.shape[0])
        if post is None:
            stats.acc_stats_for_utterance_fgmm(extractor, feats, ubm, acoustic_weight)
        else:
            stats.acc_stats_for_utterance(extractor, feats, post, acoustic_weight)


class IVector(IvectorModel):
    """Identity Vectors"""

    def __init__(self, conf_path):
        super().__init__(conf_path)
        # Set parameters of your system
        self.conf_path = conf_path
        self.NUM_GAUSSIANS = self.conf['num_gaussians']
        self.NUM_ITERATIONS = self.conf.get('num_iterations', 10)
        self.SEED = self.conf.get('seed', None)
        self.SUBTRACT_OFFSET = self.conf.get('subtract_offset', True)
        # option sections of the configuration file
        self.opts = ivectorkit.read_options(conf_path)
        self.opts['update'].num_threads = self.NUM_THREADS
        self._ubm = None


    def getUBM(self):
        """
        This method loads the UBM 'ubm/ubm_<num_gaussians>.h5' once. It
        provides the Gaussians of the extractor and the posteriors of the
        utterances that have no posterior file.
        """
        if self._ubm is None:
            model_name = "ubm_{}.h5".format(self.NUM_GAUSSIANS)
            logging.info("Loading trained UBM-{} model".format(self.NUM_GAUSSIANS))
            self._ubm = ivectorkit.Mixture(os.path.join(self.BASE_DIR, "ubm", model_name))
        return self._ubm


    def extractorPath(self, iteration):
        filename = "extractor_{}_it-{}.h5".format(self.NUM_GAUSSIANS, iteration)
        return os.path.join(self.BASE_DIR, "ivector", filename)


    def init_extractor(self):
        """
        This method initializes the i-vector extractor from the UBM and saves
        it as iteration 0 into the 'ivector' directory.
        """
        extractor = ivectorkit.IvectorExtractor.from_ubm(self.getUBM(),
                                                         self.opts['extractor'],
                                                         seed=self.SEED)
        extractor.write(self.extractorPath(0))
        return extractor


    def accumulate(self, extractor, utterances):
        """
        This method accumulates the statistics of a list of utterances with
        the current extractor.
        Args:
            extractor (IvectorExtractor): the current extractor
            utterances (list): list of utterance ids
        Returns:
            stats: the accumulated IvectorStats
        """
        stats = ivectorkit.IvectorStats(extractor, self.opts['stats'], seed=self.SEED)
        accumulate_utterances(model=self,
                              stats=stats,
                              extractor=extractor,
                              ubm=self.getUBM(),
                              acoustic_weight=self.opts['estimation'].acoustic_weight,
                              utterance_list=utterances,
                              num_thread=self.NUM_THREADS)
        stats.flush_cache()
        return stats


    def train(self):
        """
        This method trains the i-vector extractor with NUM_ITERATIONS
        iterations of EM. The statistics and the extractor of each iteration
        are written into the 'stat' and 'ivector' directories.
        """
        if os.path.exists(self.extractorPath(0)):
            extractor = ivectorkit.IvectorExtractor(self.extractorPath(0))
        else:
            extractor = self.init_extractor()
        utterances = self.getUtterances('train_list')
        logging.info("Training i-vector extractor on {} utterances".format(len(utterances)))
        for it in range(self.NUM_ITERATIONS):
            stats = self.accumulate(extractor, utterances)
            filename = "stats_{}_it-{}.h5".format(self.NUM_GAUSSIANS, it)
            stats.write(os.path.join(self.BASE_DIR, "stat", filename))
            logging.info("Iteration {}: auxf per frame is {}".format(it, stats.auxf_per_frame()))
            stats.update(self.opts['update'], extractor)
            extractor.write(self.extractorPath(it+1))
        return extractor


    def sum_accs(self, filenames):
        """
        This method sums statistics written by several jobs.
        Args:
            filenames (list): the HDF5 files of the statistics
        Returns:
            stats: IvectorStats holding the sum
        """
        stats = ivectorkit.IvectorStats(stats_opts=self.opts['stats'])
        for filename in filenames:
            stats.read(filename, add=True)
        return stats


    def extract(self, extractor=None, list_name='extract_list'):
        """
        This method extracts the i-vectors of a list of utterances and writes
        them into 'ivector/ivectors_<num_gaussians>.h5' ("segset" and
        "ivectors" datasets).
        Args:
            extractor (IvectorExtractor): if None, the last trained extractor
                is read
            list_name (string): key of the list of utterances in the configuration
        Returns:
            ivectors: numpy array, one i-vector per row
        """
        if extractor is None:
            extractor = ivectorkit.IvectorExtractor(self.extractorPath(self.NUM_ITERATIONS))
        ubm = self.getUBM()
        utterances = self.getUtterances(list_name)
        ivectors = np.zeros((len(utterances), extractor.ivector_dim()))
        for idx, utt in enumerate(tqdm(utterances, desc="Extracting")):
            feats = self.readFeatures(utt)
            post = self.readPosteriors(utt, feats.shape[0])
            if post is None:
                post, _ = ubm.component_posteriors(feats)
            utt_stats = ivectorkit.IvectorExtractorUtteranceStats(extractor.num_gauss(),
                                                                  extractor.feat_dim())
            extractor.get_stats(feats, post, utt_stats)
            utt_stats.scale(self.opts['estimation'].acoustic_weight)
            ivectors[idx] = extractor.get_ivector_distribution(utt_stats, need_var=False)
            if self.SUBTRACT_OFFSET:
                ivectors[idx, 0] -= extractor.prior_offset()
        filename = "ivectors_{}.h5".format(self.NUM_GAUSSIANS)
        safe_makedir(os.path.join(self.BASE_DIR, "ivector"))
        with h5py.File(os.path.join(self.BASE_DIR, "ivector", filename), mode="w") as h5:
            h5.create_dataset("segset", data=np.array(utterances, dtype="S"))
            h5.create_dataset("ivectors", data=ivectors,
                              compression="gzip",
                              fletcher32=True)
        return ivectors



if __name__ == "__main__":
    conf_path = "conf.yaml"
    iv = IVector(conf_path)
    extractor = iv.train()
    iv.extract(extractor)
