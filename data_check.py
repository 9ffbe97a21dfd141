import argparse
import os
from imageclassifier.classification.dataset import load_tag_file, scan_class_folders, scan_data
from imageclassifier.shared.train_args import DEFAULT_IMAGES_DIR, DEFAULT_TRAIN_TAGS


def main(argv=None):
    parser = argparse.ArgumentParser(description='Count labeled images per class')
    parser.add_argument('--images', default=DEFAULT_IMAGES_DIR)
    parser.add_argument('--tags', default=DEFAULT_TRAIN_TAGS, help='Tag file to count')
    parser.add_argument('--data', default=None, help='Root folder with class subfolders (instead of --tags)')
    args = parser.parse_args(argv)

    if args.data is not None:
        if not os.path.isdir(args.data):
            print(f'No data folder found at {args.data}')
            raise SystemExit(1)
        samples = scan_class_folders(args.data)
    else:
        samples = load_tag_file(args.tags, args.images)

    missing = [p for p, _ in samples if not os.path.isfile(p)]
    for p in missing:
        print(f'  missing image: {p}')
    scan_data(samples)
    if missing:
        raise SystemExit(1)


if __name__ == '__main__':
    main()
