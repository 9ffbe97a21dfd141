from imageclassifier.classification.evaluate import main


if __name__ == '__main__':
    main()
