from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional

from pyasn1.codec.der import decoder as der_decoder
from pyasn1.error import PyAsn1Error
from pyasn1_modules import rfc5208, rfc8018

RSA_ENCRYPTION_OID = "1.2.840.113549.1.1.1"
RSASSA_PSS_OID = "1.2.840.113549.1.1.10"

_KEY_ALGORITHM_NAMES = {
    RSA_ENCRYPTION_OID: "rsaEncryption",
    RSASSA_PSS_OID: "id-RSASSA-PSS",
    "1.2.840.10045.2.1": "id-ecPublicKey",
    "1.3.101.112": "Ed25519",
    "1.3.101.113": "Ed448",
}
_PBES1_NAMES = {
    "1.2.840.113549.1.5.3": "pbeWithMD5AndDES-CBC",
    "1.2.840.113549.1.5.6": "pbeWithMD5AndRC2-CBC",
    "1.2.840.113549.1.5.10": "pbeWithSHA1AndDES-CBC",
    "1.2.840.113549.1.5.11": "pbeWithSHA1AndRC2-CBC",
}
_PRF_NAMES = {
    "1.2.840.113549.2.7": "hmacWithSHA1",
    "1.2.840.113549.2.8": "hmacWithSHA224",
    "1.2.840.113549.2.9": "hmacWithSHA256",
    "1.2.840.113549.2.10": "hmacWithSHA384",
    "1.2.840.113549.2.11": "hmacWithSHA512",
}
_CIPHER_NAMES = {
    "1.2.840.113549.3.7": "des-EDE3-CBC",
    "2.16.840.1.101.3.4.1.2": "aes-128-cbc",
    "2.16.840.1.101.3.4.1.22": "aes-192-cbc",
    "2.16.840.1.101.3.4.1.42": "aes-256-cbc",
}
_PBES2_OID = "1.2.840.113549.1.5.13"
_PBKDF2_OID = "1.2.840.113549.1.5.12"


def _dotted(oid) -> str:
    return ".".join(str(x) for x in oid.asTuple())


def _decode_exact(der: bytes, spec):
    obj, rest = der_decoder.decode(der, asn1Spec=spec)
    if rest:
        raise PyAsn1Error(f"{len(rest)} trailing bytes after structure")
    return obj


def private_key_algorithm(der: bytes) -> Optional[str]:
    """Dotted algorithm OID of an unencrypted PKCS#8 PrivateKeyInfo, None if `der` is not one."""
    try:
        pki = _decode_exact(der, rfc5208.PrivateKeyInfo())
    except PyAsn1Error:
        return None
    return _dotted(pki["privateKeyAlgorithm"]["algorithm"])


def algorithm_name(oid: str) -> str:
    return _KEY_ALGORITHM_NAMES.get(oid, oid)


def is_encrypted(der: bytes) -> bool:
    if private_key_algorithm(der) is not None:
        return False
    try:
        _decode_exact(der, rfc5208.EncryptedPrivateKeyInfo())
    except PyAsn1Error:
        return False
    return True


def encryption_params(der: bytes) -> Optional[Dict[str, Any]]:
    """Encryption scheme of an EncryptedPrivateKeyInfo. Only public parameters are reported."""
    try:
        epki = _decode_exact(der, rfc5208.EncryptedPrivateKeyInfo())
    except PyAsn1Error:
        return None

    algo_oid = _dotted(epki["encryptionAlgorithm"]["algorithm"])
    info: Dict[str, Any] = {"algorithm_oid": algo_oid}
    if algo_oid != _PBES2_OID:
        info["algorithm"] = _PBES1_NAMES.get(algo_oid, algo_oid)
        return info

    info["algorithm"] = "pbes2"
    try:
        params, _ = der_decoder.decode(epki["encryptionAlgorithm"]["parameters"], asn1Spec=rfc8018.PBES2_params())
    except PyAsn1Error:
        return info

    kdf = params["keyDerivationFunc"]
    kdf_oid = _dotted(kdf["algorithm"])
    kdf_info: Dict[str, Any] = {"oid": kdf_oid}
    if kdf_oid == _PBKDF2_OID:
        try:
            pbkdf2, _ = der_decoder.decode(kdf["parameters"], asn1Spec=rfc8018.PBKDF2_params())
            salt = bytes(pbkdf2["salt"]["specified"]) if pbkdf2["salt"].getName() == "specified" else b""
            prf_oid = "1.2.840.113549.2.7"
            if pbkdf2["prf"].isValue:
                prf_oid = _dotted(pbkdf2["prf"]["algorithm"])
            kdf_info.update(
                {"name": "pbkdf2", "iterations": int(pbkdf2["iterationCount"]),
                 "salt_b64": base64.b64encode(salt).decode("ascii"),
                 "prf": _PRF_NAMES.get(prf_oid, prf_oid)}
            )
        except PyAsn1Error:
            pass
    enc_oid = _dotted(params["encryptionScheme"]["algorithm"])
    info["kdf"] = kdf_info
    info["cipher"] = {"name": _CIPHER_NAMES.get(enc_oid, enc_oid), "oid": enc_oid}
    return info


def encryption_warnings(info: Dict[str, Any]) -> List[str]:
    warns: List[str] = []
    alg = (info.get("algorithm") or "").lower()
    if alg != "pbes2":
        warns.append("PKCS#5 v1 (PBES1) encryption is outdated")
    cipher = (info.get("cipher", {}).get("name") or "").lower()
    if cipher == "des-ede3-cbc":
        warns.append("3DES is used to protect the key")
    kdf = info.get("kdf") or {}
    if kdf.get("name") == "pbkdf2":
        iters = int(kdf.get("iterations", 0))
        if iters and iters < 100_000:
            warns.append(f"PBKDF2 iterations={iters} look low")
        if (kdf.get("prf") or "").lower() == "hmacwithsha1":
            warns.append("PBKDF2 PRF is HMAC-SHA1")
    return warns
