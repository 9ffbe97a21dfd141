"""
Top-level training entry point. Delegates CLI handling to imageclassifier.classification.train.main().
"""

from imageclassifier.classification.train import main


if __name__ == '__main__':
    main()
