#!/usr/bin/env python3
"""
Validation script for AD Cloud Group Sync.

This script checks that the dependencies are installed, that every module
imports, and that the pure reconciliation logic behaves as expected. It
needs no directory or cloud access.
"""

import sys
import subprocess
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("ldap3", "ldap3"),
        ("PyYAML", "yaml"),
        ("cryptography", "cryptography"),
        ("msal", "msal"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "group_sync.config",
        "group_sync.identity",
        "group_sync.delta",
        "group_sync.ldap_client",
        "group_sync.source_reader",
        "group_sync.cloud.auth",
        "group_sync.cloud.base",
        "group_sync.cloud.graph",
        "group_sync.cloud.exchange",
        "group_sync.cloud_reader",
        "group_sync.mutator",
        "group_sync.notifications",
        "group_sync.retry",
        "group_sync.main",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate the reconciliation logic without any backend."""
    print("\n=== Functionality Validation ===")

    try:
        from group_sync.identity import IdentitySet
        from group_sync.delta import compute_delta
        from group_sync.models import DistributionGroup, classify_group

        source = IdentitySet(["Alice@corp.example.com", "bob@corp.example.com"])
        cloud = IdentitySet(["BOB@corp.example.com", "carol@corp.example.com"])
        delta = compute_delta(source, cloud)
        assert set(delta.to_add) == {"alice@corp.example.com"}
        assert set(delta.to_remove) == {"carol@corp.example.com"}
        assert compute_delta(source, source).is_empty
        print("  ✓ Delta calculation")

        descriptor = classify_group({"id": "g1", "mailEnabled": True, "groupTypes": []})
        assert isinstance(descriptor, DistributionGroup)
        print("  ✓ Group classification")

        from group_sync.retry import retry_call
        retry_call(lambda: "test", max_attempts=1, delay=0)
        print("  ✓ Retry mechanism")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    result = subprocess.run([sys.executable, "-m", "group_sync", "--help"],
                            capture_output=True, text=True)
    if result.returncode == 0:
        print("  ✓ Help command working")
        return True

    print("  ✗ Help command failed")
    return False


def main():
    """Run all validations."""
    print("AD Cloud Group Sync - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("\nNext steps:")
        print("  1. Copy config.example.yaml to config.yaml and fill in your tenant and mappings")
        print("  2. Test with: python -m group_sync --health-check")
        print("  3. Preview changes with: python -m group_sync --dry-run")
        print("  4. Run sync: python -m group_sync")
        return 0

    print("✗ Some validations failed!")
    print("Please resolve the issues above before using the application.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
