import argparse

DEFAULT_IMAGES_DIR = 'assets/images'
DEFAULT_TRAIN_TAGS = 'assets/images/tags.tsv'
DEFAULT_TEST_TAGS = 'assets/images/test-tags.tsv'
DEFAULT_CHECKPOINT = 'checkpoints/best.pth'


def add_data_args(parser: argparse.ArgumentParser):
    """Dataset location flags shared by training and evaluation."""
    parser.add_argument('--images', default=DEFAULT_IMAGES_DIR, help='Folder holding the images named in the tag files')
    parser.add_argument('--train-tags', default=DEFAULT_TRAIN_TAGS, help='Headerless TSV of image<TAB>label used for training')
    parser.add_argument('--test-tags', default=DEFAULT_TEST_TAGS, help='Headerless TSV of image<TAB>label used for evaluation')
    parser.add_argument('--data', default=None, help='Root folder with class subfolders (overrides the tag files; split by --val-split)')
    parser.add_argument('--val-split', type=float, default=0.2, help='Held-out fraction when using --data')
    parser.add_argument('--min-count', type=int, default=1, help='Minimum images for a class folder to be included (--data only)')
    parser.add_argument('--img-size', type=int, default=224)


def add_common_training_args(parser: argparse.ArgumentParser):
    """Add common training CLI args."""
    parser.add_argument('--epochs', type=int, default=10)
    parser.add_argument('--batch', '--batch-size', dest='batch', type=int, default=32, help='Batch size')
    parser.add_argument('--lr', type=float, default=1.0, help='Learning rate (1.0 suits lbfgs; use ~1e-3 for adam)')
    parser.add_argument('--weight-decay', type=float, default=0.0, help='L2 penalty on the linear head')
    parser.add_argument('--num-workers', type=int, default=0, help='DataLoader num_workers')
    parser.add_argument('--pin-memory', action='store_true', help='Use pin_memory in DataLoader')
    parser.add_argument('--prefetch-factor', type=int, default=None, help='DataLoader prefetch_factor (if supported)')
    parser.add_argument('--amp', action='store_true', help='Run the frozen backbone under autocast (if CUDA available)')
    parser.add_argument('--resume', default=None, help='Path to checkpoint to resume from')
    parser.add_argument('--out', default='checkpoints', help='Output folder for checkpoints')
    parser.add_argument('--device', default=None, help="Device override ('cpu' or 'cuda')")
    parser.add_argument('--resume-optimizer', action='store_true', help='When resuming from a checkpoint, also restore optimizer state if available')


def dataloader_kwargs_from_args(args):
    """Return a dict of DataLoader kwargs derived from parsed args.

    This safely includes `prefetch_factor` only when explicitly provided.
    """
    dl_kwargs = {
        'batch_size': getattr(args, 'batch', 32),
        'num_workers': getattr(args, 'num_workers', 0),
    }
    if getattr(args, 'pin_memory', False):
        dl_kwargs['pin_memory'] = True
    pf = getattr(args, 'prefetch_factor', None)
    if pf is not None and dl_kwargs['num_workers'] > 0:
        # DataLoader rejects prefetch_factor without worker processes
        dl_kwargs['prefetch_factor'] = pf
    return dl_kwargs
