#!/usr/bin/env python3
"""
Зашифровать файл книги (AES-256-GCM, BOOK_ENCRYPTION_KEY из .env) перед загрузкой в Walrus.
Печатает base64 IV и auth tag для строки в таблице books.
Запуск из корня проекта: python -m scripts.encrypt_book book.epub -o book.epub.enc
"""
import argparse
import json
import os
import sys

# корень проекта в PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bookvault.services.encryption import BookCipher


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Encrypt a book file for upload")
    parser.add_argument("source", help="plaintext book file")
    parser.add_argument("-o", "--output", help="ciphertext path (default: <source>.enc)")
    args = parser.parse_args(argv)

    output = args.output or f"{args.source}.enc"
    with open(args.source, "rb") as f:
        plaintext = f.read()

    result = BookCipher.from_settings().encrypt(plaintext)
    with open(output, "wb") as f:
        f.write(result.encrypted_data)

    print(json.dumps({
        "output": output,
        "size": len(result.encrypted_data),
        "file_encryption_iv": result.iv_b64,
        "file_encryption_tag": result.auth_tag_b64,
    }, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
