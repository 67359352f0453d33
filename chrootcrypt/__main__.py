from chrootcrypt.scripts.mount import main

if __name__ == "__main__":
    main()
