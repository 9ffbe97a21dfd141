import os
import argparse
import time
from contextlib import nullcontext
from datetime import datetime
import torch
import torch.nn as nn
import torch.optim as optim
from imageclassifier.classification.dataset import make_tag_dataloaders, make_folder_dataloaders, scan_data
from imageclassifier.classification.evaluate import compute_metrics, predictions_table, print_metrics
from imageclassifier.classification.model import EmbeddingClassifier, FEATURE_LAYERS, resolve_weights
from imageclassifier.utils import save_checkpoint, load_checkpoint, select_device
from imageclassifier.shared.train_args import add_common_training_args, add_data_args, dataloader_kwargs_from_args
from imageclassifier.shared.config_manager import generate_yaml_template, load_yaml_config, merge_configs, validate_config, wait_for_user_edit


OPTIMIZERS = ('lbfgs', 'adam')

VALIDATION_RULES = {
    'epochs': {'min': 1},
    'batch': {'min': 1},
    'lr': {'min': 0.0},
    'weight_decay': {'min': 0.0},
    'img_size': {'min': 1},
    'val_split': {'min': 0.0, 'max': 1.0},
    'lbfgs_max_iter': {'min': 1},
    'patience': {'min': 0},
    'optimizer': {'choices': list(OPTIMIZERS)},
    'feature_layer': {'choices': list(FEATURE_LAYERS)},
    'weights': {'choices': ['default', 'v1', 'none']},
}


def extract_features(model, loader, device, amp=False):
    """Run the frozen backbone once over a loader.

    Returns: (features, labels, paths) with features on the CPU.
    """
    model.eval()
    feats, labels, paths = [], [], []
    dev = torch.device(device).type
    ctx = torch.amp.autocast(device_type=dev) if amp else nullcontext()
    with torch.no_grad(), ctx:
        for imgs, lbls, pths in loader:
            feats.append(model.embed(imgs.to(device)).float().cpu())
            labels.append(lbls)
            paths.extend(pths)
    if not feats:
        return torch.empty(0, model.embedding_dim), torch.empty(0, dtype=torch.long), []
    return torch.cat(feats), torch.cat(labels), paths


def amp_enabled(amp, device):
    """True when --amp was requested and the device is CUDA ('cuda', 'cuda:1', ...)."""
    return bool(amp) and torch.device(device).type == 'cuda'


def build_optimizer(name, params, lr, weight_decay=0.0, lbfgs_max_iter=20):
    if name == 'lbfgs':
        # LBFGS has no weight_decay; the penalty is added to the loss in fit_head_epoch
        return optim.LBFGS(params, lr=lr, max_iter=lbfgs_max_iter, line_search_fn='strong_wolfe')
    if name == 'adam':
        return optim.Adam(params, lr=lr, weight_decay=weight_decay)
    raise ValueError(f"Unknown optimizer '{name}' (expected one of {OPTIMIZERS})")


def fit_head_epoch(head, features, labels, optimizer, criterion, device, batch_size=32, weight_decay=0.0):
    """One epoch of head training on cached embeddings.

    L-BFGS takes a single full-batch step (with up to max_iter inner iterations);
    other optimizers iterate shuffled minibatches.
    Returns: (loss, accuracy) on the training features.
    """
    head.train()
    features = features.to(device)
    labels = labels.to(device)

    if isinstance(optimizer, optim.LBFGS):
        def closure():
            optimizer.zero_grad()
            loss = criterion(head(features), labels)
            if weight_decay > 0:
                loss = loss + 0.5 * weight_decay * head.weight.pow(2).sum()
            loss.backward()
            return loss
        optimizer.step(closure)
    else:
        perm = torch.randperm(features.size(0), device=device)
        for start in range(0, features.size(0), batch_size):
            idx = perm[start:start + batch_size]
            optimizer.zero_grad()
            loss = criterion(head(features[idx]), labels[idx])
            loss.backward()
            optimizer.step()

    return evaluate_features(head, features, labels, criterion, device)


def evaluate_features(head, features, labels, criterion, device):
    """Loss and accuracy of the head on cached embeddings."""
    if features.size(0) == 0:
        return float('nan'), float('nan')
    head.eval()
    with torch.no_grad():
        outputs = head(features.to(device))
        labels = labels.to(device)
        loss = criterion(outputs, labels).item()
        _, preds = outputs.max(1)
        acc = (preds == labels).sum().item() / labels.size(0)
    return loss, acc


def head_probabilities(head, features, device):
    head.eval()
    with torch.no_grad():
        return torch.softmax(head(features.to(device)), dim=1).cpu()


def build_parser():
    parser = argparse.ArgumentParser(description='Fine-tune a linear classifier on frozen ResNet-18 embeddings')

    # === YAML CONFIG OPTIONS ===
    parser.add_argument('--args-input', default=None, help='Path to YAML config file. If not exists, will generate template and pause for user to edit')
    parser.add_argument('--no-wait', action='store_true', help='Do not pause for user to edit generated YAML template (use defaults)')
    parser.add_argument('--regen-args', action='store_true', help='Force regeneration of YAML template even if file exists')

    add_data_args(parser)
    add_common_training_args(parser)
    parser.add_argument('--optimizer', choices=OPTIMIZERS, default='lbfgs', help='lbfgs: full-batch maximum entropy fit; adam: minibatch')
    parser.add_argument('--lbfgs-max-iter', type=int, default=20, help='Inner iterations per L-BFGS epoch')
    parser.add_argument('--patience', type=int, default=5, help='Early stopping patience (by held-out loss); set 0 to disable')
    parser.add_argument('--augment', action='store_true', help='Augment training images (embeddings are recomputed each epoch)')
    parser.add_argument('--weights', type=str, default='default', help="Which pretrained weights to use: 'default', 'v1', or 'none'")
    parser.add_argument('--feature-layer', choices=FEATURE_LAYERS, default='logits', help='Backbone output fed to the linear head')
    parser.add_argument('--interactive', action='store_true', help='Start the interactive classifier with the trained model')
    return parser


def apply_yaml_config(args, parser):
    """Merge --args-input YAML into args (explicit CLI values win)."""
    yaml_path = args.args_input

    if args.regen_args and os.path.exists(yaml_path):
        print(f'Regenerating YAML template at {yaml_path} due to --regen-args flag')
        os.remove(yaml_path)

    if not os.path.exists(yaml_path):
        print(f'YAML config file not found at {yaml_path}')
        print('Generating template with current defaults...')
        yaml_args = {k: v for k, v in vars(args).items()
                     if k not in ('args_input', 'no_wait', 'regen_args')}
        generate_yaml_template(yaml_path, yaml_args)

        if not args.no_wait:
            print()
            print('Please edit the YAML file to configure your parameters.')
            wait_for_user_edit(yaml_path)
        else:
            print('Continuing with default values (--no-wait specified)')

    print(f'Loading YAML config from {yaml_path}...')
    yaml_config = load_yaml_config(yaml_path)
    defaults = {k: parser.get_default(k) for k in vars(args)}
    merged = merge_configs(yaml_config, vars(args), cli_defaults=defaults)
    for key, value in merged.items():
        setattr(args, key, value)
    print('✓ YAML config loaded and merged with CLI arguments')
    return args


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.args_input is not None:
        args = apply_yaml_config(args, parser)
    validate_config(vars(args), VALIDATION_RULES)

    device = select_device(args.device)

    dl_kwargs = dataloader_kwargs_from_args(args)
    batch_size = dl_kwargs.pop('batch_size', args.batch)
    if args.data is not None:
        train_loader, test_loader, classes = make_folder_dataloaders(
            args.data, batch_size=batch_size, img_size=args.img_size, val_split=args.val_split,
            augment=args.augment, min_count=args.min_count, **dl_kwargs)
    else:
        train_loader, test_loader, classes = make_tag_dataloaders(
            args.images, args.train_tags, args.test_tags, batch_size=batch_size,
            img_size=args.img_size, augment=args.augment, **dl_kwargs)
    scan_data(train_loader.dataset.samples)

    model = EmbeddingClassifier(num_classes=len(classes), weights=resolve_weights(args.weights),
                                feature_layer=args.feature_layer)
    model = model.to(device)

    criterion = nn.CrossEntropyLoss()
    optimizer = build_optimizer(args.optimizer, model.head.parameters(), args.lr,
                                weight_decay=args.weight_decay, lbfgs_max_iter=args.lbfgs_max_iter)
    use_amp = amp_enabled(args.amp, device)

    # optionally resume (load model and optimizer state if requested)
    start_epoch = 1
    if args.resume:
        if os.path.exists(args.resume):
            ckpt = load_checkpoint(args.resume, map_location=device)
            if ckpt.get('classes') != classes:
                raise ValueError(f"Resume checkpoint classes {ckpt.get('classes')} do not match dataset classes {classes}")
            model.load_state_dict(ckpt['model_state'])
            print('Loaded model state from', args.resume)
            if args.resume_optimizer and 'optimizer_state' in ckpt:
                try:
                    optimizer.load_state_dict(ckpt['optimizer_state'])
                    print('Loaded optimizer state from', args.resume)
                except ValueError:
                    print('Could not load optimizer state (optimizer/model mismatch)')
            if 'epoch' in ckpt:
                start_epoch = ckpt['epoch'] + 1
        else:
            print('Resume checkpoint not found:', args.resume)

    # embedding cache: the backbone is frozen so its outputs never change
    t0 = time.time()
    train_feats, train_labels, _ = extract_features(model, train_loader, device, amp=use_amp)
    test_feats, test_labels, test_paths = extract_features(model, test_loader, device, amp=use_amp)
    print(f'Cached embeddings: train={tuple(train_feats.shape)} test={tuple(test_feats.shape)} time={time.time() - t0:.1f}s')

    os.makedirs(args.out, exist_ok=True)
    best_path = os.path.join(args.out, 'best.pth')
    has_test = test_feats.size(0) > 0

    best_acc = -1.0
    best_val_loss = float('inf')
    epochs_no_improve = 0
    for epoch in range(start_epoch, start_epoch + args.epochs):
        t0 = time.time()
        if args.augment and epoch > start_epoch:
            train_feats, train_labels, _ = extract_features(model, train_loader, device, amp=use_amp)
        train_loss, train_acc = fit_head_epoch(model.head, train_feats, train_labels, optimizer, criterion, device,
                                               batch_size=batch_size, weight_decay=args.weight_decay)
        if has_test:
            val_loss, val_acc = evaluate_features(model.head, test_feats, test_labels, criterion, device)
        else:
            # nothing held out: track the training fit instead
            val_loss, val_acc = train_loss, train_acc
        elapsed = time.time() - t0
        epoch_time = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        print(f'Epoch {epoch}: train_loss={train_loss:.4f} train_acc={train_acc:.4f} val_loss={val_loss:.4f} val_acc={val_acc:.4f} time={elapsed:.1f}s [{epoch_time}]')

        # save best by held-out acc
        if val_acc > best_acc:
            best_acc = val_acc
            save_checkpoint({'epoch': epoch, 'model_state': model.state_dict(), 'optimizer_state': optimizer.state_dict(),
                             'classes': classes, 'img_size': args.img_size, 'feature_layer': args.feature_layer}, best_path)

        if args.patience > 0:
            if val_loss < best_val_loss - 1e-6:
                best_val_loss = val_loss
                epochs_no_improve = 0
            else:
                epochs_no_improve += 1
            if epochs_no_improve >= args.patience:
                print(f'Early stopping: no improvement in val_loss for {args.patience} epochs')
                break

    # report with the best weights, the same ones the interactive classifier will use
    model.load_state_dict(load_checkpoint(best_path, map_location=device)['model_state'])
    print(f'✓ Best checkpoint: {best_path} (val_acc={best_acc:.4f})')

    metrics = None
    if has_test:
        probs = head_probabilities(model.head, test_feats, device)
        print('Prediction with test data.')
        print(predictions_table(test_paths, probs, classes))
        metrics = compute_metrics(probs, test_labels, classes)
        print_metrics(metrics, classes)
    else:
        print('No test samples; skipping evaluation')

    if args.interactive:
        from imageclassifier.classification.infer import interactive_loop
        interactive_loop(model, classes, args.images, device=device, img_size=args.img_size)

    return model, classes, metrics


if __name__ == '__main__':
    main()
