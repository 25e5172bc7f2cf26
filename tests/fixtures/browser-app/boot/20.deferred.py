def boot(app, done):
    def _finish():
        app.get('boot-order').append('deferred')
        done()

    app.set_timeout(_finish, 0)
