"""
Encrypted Regression Command Line
=================================
Process boundary for the four roles of a run:

  keygen    key owner: context, key pair and evaluation keys to disk
  encrypt   client: features text file -> input ciphertext
  evaluate  evaluator: input ciphertext + model_params.raw -> output ciphertext
  decrypt   key owner: output ciphertext -> prediction

Exit status is 0 on success and 1 on any fatal error, reported on stderr.
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from .artifacts import ArtifactRole
from .client import decrypt_prediction, encrypt_features, read_features
from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FIRST_MOD_SIZE,
    DEFAULT_MULTIPLICATIVE_DEPTH,
    DEFAULT_RING_DIM,
    DEFAULT_SCALING_MOD_SIZE,
    SECRET_KEY_FILE,
    WEIGHTS_FILE,
)
from .exceptions import FHERegressionError, PassphraseUnavailable
from .inference_engine import EncryptedInferenceEngine
from .key_manager import ContextKeyManager
from .model_store import load_model_parameters
from .parameters import SchemeParameters
from .security_logger import SecurityLogger


def _passphrase(args) -> Optional[str]:
    name = getattr(args, 'passphrase_env', None)
    if not name:
        return None
    value = os.environ.get(name)
    if value is None:
        raise PassphraseUnavailable(f"Environment variable {name} is not set")
    return value


def _logger(args) -> Optional[SecurityLogger]:
    return SecurityLogger(args.audit_log) if args.audit_log else None


# ==================== COMMANDS ====================

def cmd_keygen(args) -> int:
    params = SchemeParameters(
        multiplicative_depth=args.depth,
        scaling_mod_size=args.scaling_mod_size,
        batch_size=args.batch_size,
        ring_dim=args.ring_dim,
        first_mod_size=args.first_mod_size,
    )
    manager = ContextKeyManager(passphrase=_passphrase(args), security_logger=_logger(args))
    secret_path = Path(args.secret_key) if args.secret_key else Path(args.keys) / SECRET_KEY_FILE

    print(f"Generating CKKS context (ring {params.ring_dim}, depth {params.multiplicative_depth})...")
    result = manager.generate_artifacts(params, args.keys, secret_path, args.features)

    print(f"✓ Context {result.context.context_id} (max level {result.context.max_level})")
    print(f"✓ Rotation keys for steps {sorted(result.evaluation_keys.rotation_keys.steps)}")
    for role, path in result.paths.items():
        print(f"  {role.value:<20} {path}")
    return 0


def cmd_encrypt(args) -> int:
    manager = ContextKeyManager(security_logger=_logger(args))
    context, public_key, _ = manager.load_public_bundle(args.keys)

    values = read_features(args.features_file)
    encrypted = encrypt_features(context, public_key, values, level=args.level,
                                 security_logger=manager.security_logger)
    manager.persist(encrypted, ArtifactRole.INPUT_CIPHERTEXT, args.output)

    print(f"✓ Encrypted {len(values)} features -> {args.output}")
    return 0


def cmd_evaluate(args) -> int:
    security_logger = _logger(args)
    manager = ContextKeyManager(security_logger=security_logger)
    context, _, evaluation_keys = manager.load_public_bundle(args.keys)

    model = load_model_parameters(args.weights)
    encrypted_input = manager.load(args.input, ArtifactRole.INPUT_CIPHERTEXT, context)

    engine = EncryptedInferenceEngine(context, evaluation_keys, security_logger)
    result = engine.predict(encrypted_input, model)
    manager.persist(result, ArtifactRole.OUTPUT_CIPHERTEXT, args.output)

    print(f"✓ Evaluated {model.feature_count}-feature model -> {args.output}")
    if security_logger is not None:
        print(f"  {security_logger.generate_audit_report()['conclusion']}")
    return 0


def cmd_decrypt(args) -> int:
    manager = ContextKeyManager(passphrase=_passphrase(args), security_logger=_logger(args))
    context, _, _ = manager.load_public_bundle(args.keys)
    secret_path = Path(args.secret_key) if args.secret_key else Path(args.keys) / SECRET_KEY_FILE
    secret_key = manager.load_secret_key(secret_path, context)

    encrypted = manager.load(args.input, ArtifactRole.OUTPUT_CIPHERTEXT, context)
    prediction = decrypt_prediction(context, secret_key, encrypted, manager.security_logger)

    print(f"{prediction:.6f}")
    return 0


# ==================== PARSER ====================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fhe-regression",
        description="Linear regression inference on CKKS-encrypted features",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fhe-regression keygen --keys keys/ --features 4
  fhe-regression encrypt --keys keys/ --features-file test.txt --output input.bin
  fhe-regression evaluate --keys keys/ --input input.bin --output output.bin
  fhe-regression decrypt --keys keys/ --input output.bin
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def common(sub, passphrase=False):
        sub.add_argument("--keys", required=True,
                         help="Directory holding the public artifacts")
        sub.add_argument("--audit-log", metavar="FILE",
                         help="Append audit entries to this JSON-lines file")
        if passphrase:
            sub.add_argument("--secret-key", metavar="PATH",
                             help=f"Secret key file (default: <keys>/{SECRET_KEY_FILE})")
            sub.add_argument("--passphrase-env", metavar="VAR",
                             help="Environment variable holding the secret key passphrase")

    keygen = subparsers.add_parser("keygen", help="Generate context and keys")
    common(keygen, passphrase=True)
    keygen.add_argument("--features", type=int, required=True,
                        help="Feature count the rotation keys must cover")
    keygen.add_argument("--depth", type=int, default=DEFAULT_MULTIPLICATIVE_DEPTH,
                        help=f"Multiplicative depth (default: {DEFAULT_MULTIPLICATIVE_DEPTH})")
    keygen.add_argument("--scaling-mod-size", type=int, default=DEFAULT_SCALING_MOD_SIZE,
                        help=f"Scaling modulus bits (default: {DEFAULT_SCALING_MOD_SIZE})")
    keygen.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE,
                        help=f"Packing batch size (default: {DEFAULT_BATCH_SIZE})")
    keygen.add_argument("--ring-dim", type=int, default=DEFAULT_RING_DIM,
                        help=f"Ring dimension (default: {DEFAULT_RING_DIM})")
    keygen.add_argument("--first-mod-size", type=int, default=DEFAULT_FIRST_MOD_SIZE,
                        help=f"First modulus bits (default: {DEFAULT_FIRST_MOD_SIZE})")
    keygen.set_defaults(func=cmd_keygen)

    encrypt = subparsers.add_parser("encrypt", help="Encrypt a feature file")
    common(encrypt)
    encrypt.add_argument("--features-file", required=True,
                         help="Text file with one feature per line")
    encrypt.add_argument("--output", required=True, help="Input ciphertext to write")
    encrypt.add_argument("--level", type=int, default=0,
                         help="Encrypt at this level of the modulus chain (default: 0)")
    encrypt.set_defaults(func=cmd_encrypt)

    evaluate = subparsers.add_parser("evaluate", help="Run encrypted inference")
    common(evaluate)
    evaluate.add_argument("--input", required=True, help="Input ciphertext")
    evaluate.add_argument("--weights", default=WEIGHTS_FILE,
                          help=f"Model parameters file (default: {WEIGHTS_FILE})")
    evaluate.add_argument("--output", required=True, help="Output ciphertext to write")
    evaluate.set_defaults(func=cmd_evaluate)

    decrypt = subparsers.add_parser("decrypt", help="Decrypt a prediction")
    common(decrypt, passphrase=True)
    decrypt.add_argument("--input", required=True, help="Output ciphertext")
    decrypt.set_defaults(func=cmd_decrypt)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (FHERegressionError, OSError, ValueError) as e:
        print(f"✗ {args.command} failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
