# Tuning profiles: dict of { display_label: frequency_hz } per string (low to high)
TUNINGS = {
    "Standard": {
        "E2": 82.41,
        "A2": 110.00,
        "D3": 146.83,
        "G3": 196.00,
        "B3": 246.94,
        "E4": 329.63,
    },
    "Drop D": {
        "D2": 73.42,
        "A2": 110.00,
        "D3": 146.83,
        "G3": 196.00,
        "B3": 246.94,
        "E4": 329.63,
    },
    "Seasons (Chris Cornell)": {
        "F2(6)": 87.31,
        "F2(5)": 87.31,
        "C3(4)": 130.81,
        "C3(3)": 130.81,
        "C3(2)": 130.81,
        "F3(1)": 174.61,
    },
}

# Default tuning
STANDARD_TUNING = TUNINGS["Standard"]

# Audio settings
# One fixed capture rate for the whole pipeline (CD quality)
SAMPLE_RATE = 44100

# Samples per block (~46ms at 44.1kHz). YIN can only see periods up to half
# the block, so 2048 keeps the low E string (82 Hz, ~535 samples) in range.
BLOCK_SIZE = 2048

# How often the session analyses the newest block, in seconds
ANALYSIS_INTERVAL = 0.5

# Longest wait for one block from the device, in seconds
READ_TIMEOUT = 0.5

# Blocks buffered between capture and analysis. Oldest is dropped on overflow.
QUEUE_SIZE = 2

# Reference pitch for equal temperament: A4
CONCERT_PITCH = 440.0

# Pitch estimation
DEFAULT_ESTIMATOR = "yin"
FMIN = 60.0              # Lowest pitch we look for (just below drop D)
FMAX = 1500.0            # Highest pitch we look for (above E6)
YIN_THRESHOLD = 0.20     # Absolute threshold on the normalized difference
SILENCE_RMS = 1e-4       # Blocks quieter than this are treated as silence

# CREPE expects 16kHz audio, so blocks are resampled before inference
CREPE_SAMPLE_RATE = 16000
CREPE_MODEL = "tiny"
CREPE_HOP_SIZE = 512
CREPE_MIN_CONFIDENCE = 0.5

# Logging
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
