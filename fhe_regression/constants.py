"""
Default parameters and artifact names.

The scheme defaults mirror the production key generator: ten levels of
50-bit scaling primes over a 32768-degree ring, packing up to 8192 slots.
"""

DEFAULT_MULTIPLICATIVE_DEPTH = 10
DEFAULT_SCALING_MOD_SIZE = 50
DEFAULT_BATCH_SIZE = 8192
DEFAULT_RING_DIM = 32768
DEFAULT_FIRST_MOD_SIZE = 60

# Largest prime the substrate will generate for the modulus chain
MAX_MODULUS_BITS = 60
MIN_SCALING_MOD_SIZE = 20

# Upper bound on the total coefficient-modulus bit count per ring
# dimension for 128-bit classical security (HE standard tables).
MAX_COEFF_MODULUS_BITS = {
    1024: 27,
    2048: 54,
    4096: 109,
    8192: 218,
    16384: 438,
    32768: 881,
}

# One multiplicative level for the weight product; additions, rotations
# and the bias add consume none.
REQUIRED_LEVELS = 1

# Artifact file names
CONTEXT_FILE = "cryptocontext.bin"
PUBLIC_KEY_FILE = "key-public.bin"
MULT_KEY_FILE = "key-mult.bin"
ROTATION_KEY_FILE = "key-rot.bin"
SECRET_KEY_FILE = "key-secret.bin"
WEIGHTS_FILE = "model_params.raw"

# Secret-key sealing
KDF_ITERATIONS = 200_000
KDF_SALT_BYTES = 16
