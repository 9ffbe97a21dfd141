"""
Top-level classification shim. Delegates to imageclassifier.classification.infer.main().
"""

from imageclassifier.classification.infer import main


if __name__ == '__main__':
    main()
